"""
Agent Executor
==============
Runs one A2A task from the incoming user message to its terminal status
event:

    submitted → working → completed | input-required | failed | canceled

Every path that gets past the ``working`` event publishes exactly one
final status update. Cancellation is recorded by ``cancel_task`` and only
observed after the model returns; a running model call is never
interrupted.
"""

import asyncio
import logging

from .context_store import ContextStore, InMemoryContextStore
from .event_bus import EventBus
from .reasoning import Reasoner
from .task_store import (
    Message, Task, TaskStatus, TaskStatusUpdateEvent, new_agent_message, now_iso,
    STATE_SUBMITTED, STATE_WORKING, STATE_FAILED, STATE_CANCELED,
)
from .tools import WorkflowTool
from .translation import (
    FinalState, classify_final_state, extract_text, final_state_to_a2a,
    history_to_model_messages,
)

logger = logging.getLogger("workflow_agent")

WORKING_TEXT = "Processing your question, hang tight!"
NO_MESSAGE_TEXT = "No message found to process."


class RequestContext:
    """Inbound task request as handed over by the protocol server."""

    def __init__(self, user_message: Message, task_id: str, context_id: str,
                 task: Task | None = None):
        self.user_message = user_message
        self.task_id = task_id
        self.context_id = context_id
        self.task = task


class AgentExecutor:
    """Drives the task lifecycle around a single reasoning call."""

    def __init__(self, reasoner: Reasoner, tool: WorkflowTool, webhook_url: str = "",
                 context_store: ContextStore | None = None,
                 cancelled_tasks: set[str] | None = None):
        self.reasoner = reasoner
        self.tool = tool
        self.webhook_url = webhook_url
        self.contexts = context_store if context_store is not None else InMemoryContextStore()
        self.cancelled_tasks = cancelled_tasks if cancelled_tasks is not None else set()
        self.running_tasks: set[str] = set()

    async def cancel_task(self, task_id: str, event_bus: EventBus | None = None):
        """Record a cancellation request. The execute path publishes the event.

        Requests for a task that is not currently executing are ignored, so
        they cannot leak into a later turn of the same task.
        """
        if task_id not in self.running_tasks:
            logger.info(f"[Executor] Ignoring cancellation for task {task_id}: not running")
            return
        self.cancelled_tasks.add(task_id)
        logger.info(f"[Executor] Cancellation requested for task {task_id}")

    async def execute(self, request_context: RequestContext, event_bus: EventBus):
        user_message = request_context.user_message
        existing_task = request_context.task
        task_id = request_context.task_id
        context_id = request_context.context_id

        logger.info(
            f"[Executor] Processing message {user_message.message_id} "
            f"for task {task_id} (context: {context_id})"
        )
        logger.debug(f"[Executor] User text: {extract_text(user_message)[:200]!r}")

        self.running_tasks.add(task_id)
        try:
            if existing_task is None:
                event_bus.publish(Task(
                    task_id,
                    context_id,
                    TaskStatus(STATE_SUBMITTED),
                    history=[user_message],
                    metadata=user_message.metadata,
                ))

            event_bus.publish(_status_update(
                task_id, context_id, STATE_WORKING,
                new_agent_message(WORKING_TEXT, task_id, context_id),
                final=False,
            ))

            async with self.contexts.lock(context_id):
                self.contexts.append(context_id, user_message)
                await self._run(request_context, event_bus)
        finally:
            self.running_tasks.discard(task_id)
            self.cancelled_tasks.discard(task_id)

    async def _run(self, request_context: RequestContext, event_bus: EventBus):
        task_id = request_context.task_id
        context_id = request_context.context_id

        try:
            messages = history_to_model_messages(self.contexts.get(context_id))
            if not messages:
                logger.warning(f"[Executor] No text messages in history for task {task_id}")
                event_bus.publish(_status_update(
                    task_id, context_id, STATE_FAILED,
                    new_agent_message(NO_MESSAGE_TEXT, task_id, context_id),
                    final=True,
                ))
                return

            response_text = await self.reasoner.generate(
                messages,
                goal=_goal(request_context),
                now=now_iso(),
                webhook_url=self.webhook_url,
                input_fields=self.tool.fields,
                tools=[self.tool],
            )

            if task_id in self.cancelled_tasks:
                logger.info(f"[Executor] Task {task_id} canceled")
                event_bus.publish(_status_update(task_id, context_id, STATE_CANCELED, final=True))
                return

            final_state, reply_text = classify_final_state(response_text)
            if final_state is FinalState.UNKNOWN:
                logger.warning(
                    f"[Executor] Unexpected final state line for task {task_id}; "
                    "defaulting to completed"
                )
            state = final_state_to_a2a(final_state)

            agent_message = new_agent_message(reply_text, task_id, context_id)
            self.contexts.append(context_id, agent_message)
            event_bus.publish(_status_update(task_id, context_id, state, agent_message, final=True))
            logger.info(f"[Executor] Task {task_id} finished with state: {state}")

        except asyncio.CancelledError:
            logger.info(f"[Executor] Task {task_id} interrupted")
            event_bus.publish(_status_update(task_id, context_id, STATE_CANCELED, final=True))
            raise
        except Exception as e:
            logger.exception(f"[Executor] Error processing task {task_id}")
            event_bus.publish(_status_update(
                task_id, context_id, STATE_FAILED,
                new_agent_message(f"Agent error: {e}", task_id, context_id),
                final=True,
            ))


def _goal(request_context: RequestContext) -> str | None:
    """Goal from the existing task's metadata, else the message's."""
    task = request_context.task
    if task is not None and task.metadata and task.metadata.get("goal"):
        return task.metadata["goal"]
    metadata = request_context.user_message.metadata or {}
    return metadata.get("goal")


def _status_update(task_id: str, context_id: str, state: str,
                   message: Message | None = None, final: bool = False) -> TaskStatusUpdateEvent:
    return TaskStatusUpdateEvent(task_id, context_id, TaskStatus(state, message), final)
