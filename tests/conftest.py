"""Shared fixtures for the workflow agent tests."""

import asyncio
import copy
import uuid

import pytest

from workflow_agent.config import DEFAULT_CONFIG, resolve_input_fields
from workflow_agent.reasoning import Reasoner
from workflow_agent.task_store import Message


class FakeReasoner(Reasoner):
    """Scripted stand-in for the chat model.

    ``replies`` are returned in order (the last one repeats). ``gate``
    blocks generate() until set. ``tool_arguments`` are passed to the
    first tool before replying, and the tool outputs kept in ``tool_results``.
    """

    def __init__(self, replies=("Done.\nCOMPLETED",), error=None, gate=None,
                 tool_arguments=()):
        self.replies = list(replies)
        self.error = error
        self.gate = gate
        self.tool_arguments = list(tool_arguments)
        self.tool_results = []
        self.calls = []
        self.started = asyncio.Event()
        self.closed = False

    async def generate(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        for arguments in self.tool_arguments:
            self.tool_results.append(await kwargs["tools"][0].run(arguments))
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]

    async def close(self):
        self.closed = True


class FakeInvoker:
    """Records workflow calls instead of making them."""

    def __init__(self, result=None):
        self.result = {"status": "ok"} if result is None else result
        self.calls = []
        self.closed = False

    async def invoke(self, endpoint, record):
        self.calls.append((endpoint, record))
        return self.result

    async def close(self):
        self.closed = True


def make_message(*texts, role="user", message_id=None, metadata=None,
                 parts=None, context_id=None) -> Message:
    if parts is None:
        parts = tuple({"kind": "text", "text": t} for t in texts)
    return Message(
        message_id=message_id or str(uuid.uuid4()),
        role=role,
        parts=tuple(parts),
        context_id=context_id,
        metadata=metadata,
    )


async def collect(event_bus) -> list:
    return [event async for event in event_bus.events()]


@pytest.fixture
def config():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["workflow"]["webhook_url"] = "http://workflow.test/webhook"
    cfg["workflow"]["input_fields"] = [
        {"fieldName": "query", "fieldType": "text", "required": True},
    ]
    return resolve_input_fields(cfg)

