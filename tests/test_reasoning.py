"""Tests for the chat completion reasoner against a scripted local API."""

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from workflow_agent.reasoning import (
    ChatCompletionsReasoner,
    ReasoningError,
    build_system_prompt,
    extract_tool_calls,
    to_chat_message,
)
from workflow_agent.tools import ToolInputError
from workflow_agent.validation import InputFieldConfig

MESSAGES = [{"role": "user", "content": [{"text": "Move booking B-1 to Friday"}]}]


def _chat_api(*replies, status=200):
    """Chat completion API returning ``replies`` (assistant messages) in order."""
    app = web.Application()
    app["requests"] = []
    app["headers"] = []
    queue = list(replies)

    async def handler(request: web.Request) -> web.Response:
        app["requests"].append(await request.json())
        app["headers"].append(dict(request.headers))
        if status != 200:
            return web.Response(status=status, text="model not loaded")
        message = queue.pop(0) if len(queue) > 1 else queue[0]
        return web.json_response({"choices": [{"message": message}]})

    app.router.add_post("/v1/chat/completions", handler)
    return app


class RecordingTool:
    name = "call_workflow"

    def __init__(self, result="workflow ok", error=None):
        self.result = result
        self.error = error
        self.calls = []

    def definition(self):
        return {"type": "function", "function": {"name": self.name, "parameters": {}}}

    async def run(self, arguments):
        self.calls.append(arguments)
        if self.error:
            raise self.error
        return self.result


async def _generate(app, tools=(), **reasoner_kwargs):
    async with TestServer(app) as server:
        reasoner = ChatCompletionsReasoner(str(server.make_url("/v1")), **reasoner_kwargs)
        try:
            return await reasoner.generate(
                MESSAGES,
                goal="Keep bookings up to date",
                now="2024-05-01T10:00:00+00:00",
                webhook_url="http://workflow.test/webhook",
                input_fields=(InputFieldConfig("bookingId", "text", True),),
                tools=list(tools),
            )
        finally:
            await reasoner.close()


def _tool_call(arguments, call_id="call_1"):
    return {
        "role": "assistant",
        "content": "",
        "tool_calls": [{
            "id": call_id,
            "type": "function",
            "function": {"name": "call_workflow", "arguments": arguments},
        }],
    }


@pytest.mark.asyncio
async def test_plain_reply_is_returned():
    app = _chat_api({"role": "assistant", "content": "Hello\nCOMPLETED"})
    text = await _generate(app, model="qwen", api_key="sk-test")

    assert text == "Hello\nCOMPLETED"
    request = app["requests"][0]
    assert request["model"] == "qwen"
    assert request["messages"][0]["role"] == "system"
    assert "Keep bookings up to date" in request["messages"][0]["content"]
    assert "http://workflow.test/webhook" in request["messages"][0]["content"]
    assert request["messages"][1] == {"role": "user", "content": "Move booking B-1 to Friday"}
    assert "tools" not in request
    assert app["headers"][0]["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_tool_call_round_trip():
    arguments = {"webhookUrl": "http://workflow.test/webhook", "requestContext": {"bookingId": "B-1"}}
    app = _chat_api(
        _tool_call(json.dumps(arguments)),
        {"role": "assistant", "content": "Moved.\nCOMPLETED"},
    )
    tool = RecordingTool(result='{"moved": true}')

    text = await _generate(app, tools=[tool])

    assert text == "Moved.\nCOMPLETED"
    assert tool.calls == [arguments]
    second = app["requests"][1]
    assert second["tools"] == [tool.definition()]
    assert second["messages"][-2]["tool_calls"][0]["id"] == "call_1"
    assert second["messages"][-1] == {
        "role": "tool",
        "tool_call_id": "call_1",
        "content": '{"moved": true}',
    }


@pytest.mark.asyncio
async def test_tool_input_error_is_fed_back_to_model():
    app = _chat_api(
        _tool_call({"webhookUrl": "x", "requestContext": {}}),
        {"role": "assistant", "content": "Which booking?\nAWAITING_USER_INPUT"},
    )
    tool = RecordingTool(error=ToolInputError("bookingId: Required"))

    text = await _generate(app, tools=[tool])

    assert text.endswith("AWAITING_USER_INPUT")
    assert app["requests"][1]["messages"][-1]["content"] == "Error: bookingId: Required"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model():
    app = _chat_api(
        {"role": "assistant", "tool_calls": [{"id": "c", "function": {"name": "rm_rf", "arguments": "{}"}}]},
        {"role": "assistant", "content": "Sorry\nCOMPLETED"},
    )
    await _generate(app, tools=[RecordingTool()])
    assert "Unknown tool 'rm_rf'" in app["requests"][1]["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_too_many_tool_rounds_raises():
    app = _chat_api(_tool_call("{}"))
    with pytest.raises(ReasoningError, match="2 rounds"):
        await _generate(app, tools=[RecordingTool()], max_tool_rounds=2)
    assert len(app["requests"]) == 3


@pytest.mark.asyncio
async def test_http_error_raises():
    app = _chat_api({"content": "unused"}, status=500)
    with pytest.raises(ReasoningError, match="HTTP 500"):
        await _generate(app)


def test_extract_tool_calls_shapes():
    calls = extract_tool_calls({"tool_calls": [
        {"id": "a", "function": {"name": "t", "arguments": '{"x": 1}'}},
        {"function": {"name": "t", "arguments": {"y": 2}}},
        {"name": "flat", "arguments": "not json"},
        {"function": {"name": ""}},
    ]})
    assert calls == [
        {"id": "a", "name": "t", "arguments": {"x": 1}},
        {"id": "call_1", "name": "t", "arguments": {"y": 2}},
        {"id": "call_2", "name": "flat", "arguments": None},
    ]
    assert extract_tool_calls({"content": "hi"}) == []


def test_to_chat_message():
    assert to_chat_message({"role": "model", "content": [{"text": "a"}, {"text": "b"}]}) == {
        "role": "assistant",
        "content": "a\nb",
    }


def test_system_prompt_mentions_contract():
    prompt = build_system_prompt(
        None, "now", "", (InputFieldConfig("when", "date", False),),
    )
    assert "when (date, optional)" in prompt
    assert "(not configured)" in prompt
    assert "AWAITING_USER_INPUT" in prompt
    assert "Your goal" not in prompt
