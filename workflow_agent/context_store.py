"""
Context Store
=============
Conversation history per A2A context id. Entries only grow; appending a
message id that is already present is a no-op.

The store does no locking of its own around get/append. Callers that may
touch the same context concurrently hold ``lock(context_id)`` around their
read-modify-write sequence.
"""

import asyncio

from .task_store import Message


class ContextStore:
    """Interface for conversation history storage."""

    def get(self, context_id: str) -> list[Message]:
        raise NotImplementedError

    def append(self, context_id: str, message: Message) -> bool:
        raise NotImplementedError

    def clear(self, context_id: str):
        raise NotImplementedError

    def lock(self, context_id: str) -> asyncio.Lock:
        raise NotImplementedError


class InMemoryContextStore(ContextStore):
    """Process-lifetime history map. No eviction."""

    def __init__(self):
        self._contexts: dict[str, list[Message]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, context_id: str) -> list[Message]:
        """Return a copy of the context's messages in insertion order."""
        return list(self._contexts.get(context_id, []))

    def append(self, context_id: str, message: Message) -> bool:
        """Append ``message``. Returns False if its id was already stored."""
        history = self._contexts.setdefault(context_id, [])
        if any(m.message_id == message.message_id for m in history):
            return False
        history.append(message)
        return True

    def clear(self, context_id: str):
        self._contexts.pop(context_id, None)

    def lock(self, context_id: str) -> asyncio.Lock:
        if context_id not in self._locks:
            self._locks[context_id] = asyncio.Lock()
        return self._locks[context_id]
