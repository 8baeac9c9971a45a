"""
Task Store
==========
A2A protocol objects (messages, tasks, status updates) and the in-memory
store the server folds published events into.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# A2A task states
STATE_SUBMITTED = "submitted"
STATE_WORKING = "working"
STATE_INPUT_REQUIRED = "input-required"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"
STATE_CANCELED = "canceled"
STATE_UNKNOWN = "unknown"

TERMINAL_STATES = {STATE_COMPLETED, STATE_FAILED, STATE_CANCELED}

# States a task can rest in between turns; a new message resumes it
INTERRUPTED_STATES = {STATE_INPUT_REQUIRED}

ROLE_USER = "user"
ROLE_AGENT = "agent"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """A single A2A message. Never mutated after creation."""
    message_id: str
    role: str
    parts: tuple = ()
    task_id: str | None = None
    context_id: str | None = None
    metadata: dict | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Build a Message from its JSON-RPC form.

        Parts may use ``kind`` (A2A 0.3) or the older ``type`` key.
        """
        parts = []
        for part in data.get("parts") or []:
            if not isinstance(part, dict):
                continue
            kind = part.get("kind") or part.get("type") or "text"
            normalized = dict(part)
            normalized.pop("type", None)
            normalized["kind"] = kind
            parts.append(normalized)
        return cls(
            message_id=data.get("messageId") or str(uuid.uuid4()),
            role=ROLE_AGENT if data.get("role") == ROLE_AGENT else ROLE_USER,
            parts=tuple(parts),
            task_id=data.get("taskId"),
            context_id=data.get("contextId"),
            metadata=data.get("metadata"),
        )

    def text_parts(self) -> list[str]:
        """Non-empty text from text-kind parts, in order."""
        return [
            p["text"] for p in self.parts
            if p.get("kind") == "text" and isinstance(p.get("text"), str) and p["text"]
        ]

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "kind": "message",
            "messageId": self.message_id,
            "role": self.role,
            "parts": [dict(p) for p in self.parts],
        }
        if self.task_id:
            result["taskId"] = self.task_id
        if self.context_id:
            result["contextId"] = self.context_id
        if self.metadata:
            result["metadata"] = self.metadata
        return result


def new_agent_message(text: str, task_id: str, context_id: str) -> Message:
    """Create an agent message carrying a single text part."""
    return Message(
        message_id=str(uuid.uuid4()),
        role=ROLE_AGENT,
        parts=({"kind": "text", "text": text},),
        task_id=task_id,
        context_id=context_id,
    )


@dataclass
class TaskStatus:
    state: str
    message: Message | None = None
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"state": self.state, "timestamp": self.timestamp}
        if self.message is not None:
            result["message"] = self.message.to_dict()
        return result


class Task:
    """Represents a single A2A task with its lifecycle state."""

    def __init__(self, task_id: str, context_id: str, status: TaskStatus,
                 history: list[Message] | None = None, metadata: dict | None = None):
        self._id = task_id
        self._context_id = context_id
        self.status = status
        self._history: list[Message] = list(history or [])
        self.metadata = metadata

    @property
    def id(self) -> str:
        return self._id

    @property
    def context_id(self) -> str:
        return self._context_id

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def state(self) -> str:
        return self.status.state

    def append_history(self, message: Message):
        """Append to history, skipping a message id that is already present."""
        if any(m.message_id == message.message_id for m in self._history):
            return
        self._history.append(message)

    def to_dict(self, include_history: bool = True) -> dict:
        """Convert to A2A task response format."""
        result: dict[str, Any] = {
            "kind": "task",
            "id": self.id,
            "contextId": self.context_id,
            "status": self.status.to_dict(),
        }
        if include_history:
            result["history"] = [m.to_dict() for m in self._history]
        if self.metadata:
            result["metadata"] = self.metadata
        return result


class TaskStatusUpdateEvent:
    """Wire representation of one task state transition."""

    def __init__(self, task_id: str, context_id: str, status: TaskStatus, final: bool):
        if status.state == STATE_UNKNOWN:
            raise ValueError("The 'unknown' state is never published")
        self.task_id = task_id
        self.context_id = context_id
        self.status = status
        self.final = final

    def to_dict(self) -> dict:
        return {
            "kind": "status-update",
            "taskId": self.task_id,
            "contextId": self.context_id,
            "status": self.status.to_dict(),
            "final": self.final,
        }


class TaskStore:
    """In-memory task store keyed by task id. Lives as long as the process."""

    def __init__(self):
        self._tasks: dict[str, Task] = {}

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def save(self, task: Task):
        self._tasks[task.id] = task

    def apply(self, event) -> Task | None:
        """Fold a published event into the stored task and return it."""
        if isinstance(event, Task):
            existing = self._tasks.get(event.id)
            if existing is None:
                self.save(event)
                return event
            for message in event.history:
                existing.append_history(message)
            existing.status = event.status
            return existing

        if isinstance(event, TaskStatusUpdateEvent):
            task = self._tasks.get(event.task_id)
            if task is None:
                task = Task(event.task_id, event.context_id, event.status)
                self.save(task)
            else:
                task.status = event.status
            if event.status.message is not None:
                task.append_history(event.status.message)
            return task

        return None

    def list_active(self) -> list[str]:
        """Return IDs of tasks not yet in a terminal or interrupted state."""
        return [
            task_id for task_id, task in self._tasks.items()
            if task.state not in TERMINAL_STATES and task.state not in INTERRUPTED_STATES
        ]
