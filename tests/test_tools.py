"""Tests for the workflow tool exposed to the model."""

import json

import pytest
from conftest import FakeInvoker

from workflow_agent.tools import TOOL_NAME, ToolInputError, WorkflowTool
from workflow_agent.validation import ERROR_HEADER, InputFieldConfig

URL = "http://workflow.test/webhook"
FIELDS = (
    InputFieldConfig("bookingId", "text", True),
    InputFieldConfig("nights", "number", False),
)


@pytest.mark.asyncio
async def test_object_result_is_serialized():
    invoker = FakeInvoker({"status": "booked", "room": 12})
    tool = WorkflowTool(invoker, FIELDS)

    output = await tool(URL, {"bookingId": "B-1", "nights": 2})

    assert json.loads(output) == {"status": "booked", "room": 12}
    assert output == json.dumps({"status": "booked", "room": 12}, indent=2)
    assert invoker.calls == [(URL, {"bookingId": "B-1", "nights": 2})]


@pytest.mark.asyncio
async def test_text_result_passes_through():
    tool = WorkflowTool(FakeInvoker("all good"))
    assert await tool(URL, {"anything": 1}) == "all good"


@pytest.mark.asyncio
async def test_invalid_record_is_rejected_before_invoking():
    invoker = FakeInvoker()
    tool = WorkflowTool(invoker, FIELDS)

    with pytest.raises(ToolInputError) as exc_info:
        await tool(URL, {"nights": "two"})

    assert invoker.calls == []
    assert exc_info.value.errors == [
        "bookingId: Required",
        "nights: Expected number, received string",
    ]
    assert str(exc_info.value).startswith(ERROR_HEADER)


@pytest.mark.asyncio
async def test_missing_record_lists_required_fields():
    tool = WorkflowTool(FakeInvoker(), FIELDS)
    with pytest.raises(ToolInputError, match="Required fields: bookingId"):
        await tool(URL, None)


@pytest.mark.asyncio
async def test_no_fields_skips_validation():
    invoker = FakeInvoker()
    await WorkflowTool(invoker)(URL, None)
    assert invoker.calls == [(URL, None)]


@pytest.mark.asyncio
async def test_run_with_model_arguments():
    invoker = FakeInvoker()
    tool = WorkflowTool(invoker, FIELDS)
    await tool.run({"webhookUrl": URL, "requestContext": {"bookingId": "B-2"}})
    assert invoker.calls == [(URL, {"bookingId": "B-2"})]


@pytest.mark.asyncio
@pytest.mark.parametrize("arguments, message", [
    (None, "must be an object"),
    ("text", "must be an object"),
    ({"requestContext": {}}, "webhookUrl: Required"),
])
async def test_run_rejects_bad_arguments(arguments, message):
    with pytest.raises(ToolInputError, match=message):
        await WorkflowTool(FakeInvoker()).run(arguments)


def test_definition_declares_input_schema():
    definition = WorkflowTool(FakeInvoker()).definition()
    assert definition["type"] == "function"
    assert definition["function"]["name"] == TOOL_NAME
    schema = definition["function"]["parameters"]
    assert schema["required"] == ["webhookUrl", "requestContext"]
    assert schema["properties"]["requestContext"]["type"] == "object"
