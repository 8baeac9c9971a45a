"""
Workflow Tool
=============
The one tool the model can call: validate a request context against the
configured input fields, then trigger the workflow webhook.

Validation failures are raised as ToolInputError so the reasoning loop can
hand them back to the model, which is expected to retry with corrected
arguments.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from .validation import format_validation_errors, validate_input_fields
from .workflow import WorkflowInvoker

logger = logging.getLogger("workflow_agent")

TOOL_NAME = "call_workflow"

TOOL_DESCRIPTION = (
    "Call the automation workflow by sending a request to the webhook URL with "
    "the request context. The requestContext parameter MUST be a valid object "
    "with the required field names and values extracted from the user's message."
)

INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "webhookUrl": {
            "type": "string",
            "description": "The webhook URL to send the request to",
        },
        "requestContext": {
            "type": "object",
            "additionalProperties": True,
            "description": (
                "REQUIRED: A JSON object containing the input fields with exact "
                "field names as keys and extracted values. Example: "
                "{\"fieldName\": \"extracted value\"}. NEVER pass null."
            ),
        },
    },
    "required": ["webhookUrl", "requestContext"],
}


class WorkflowTool:
    """Exposes WorkflowInvoker to the model with a declared input schema."""

    name = TOOL_NAME
    description = TOOL_DESCRIPTION
    input_schema = INPUT_SCHEMA

    def __init__(self, invoker: WorkflowInvoker, fields=()):
        self.invoker = invoker
        self.fields = tuple(fields)

    def definition(self) -> dict:
        """OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    async def run(self, arguments: Any) -> str:
        """Run with the decoded arguments object the model supplied."""
        if not isinstance(arguments, Mapping):
            raise ToolInputError(f"Tool arguments must be an object, got {type(arguments).__name__}")
        webhook_url = arguments.get("webhookUrl")
        if not webhook_url or not isinstance(webhook_url, str):
            raise ToolInputError("webhookUrl: Required")
        return await self(webhook_url, arguments.get("requestContext"))

    async def __call__(self, webhook_url: str, request_context: Any) -> str:
        logger.info(f"[Tool] {self.name} -> {webhook_url}")
        self.check(request_context)

        data = await self.invoker.invoke(webhook_url, request_context)
        output = data if isinstance(data, str) else json.dumps(data, indent=2)
        logger.debug(f"[Tool] {self.name} returned {len(output)} chars")
        return output

    def check(self, request_context: Any):
        """Raise ToolInputError if ``request_context`` fails validation."""
        if not self.fields:
            return

        if not isinstance(request_context, Mapping):
            required = ", ".join(f.field_name for f in self.fields if f.required)
            kind = "null" if request_context is None else type(request_context).__name__
            raise ToolInputError(
                f"Request context is {kind}, but workflow requires input fields. "
                f"Required fields: {required}. "
                "Please provide a valid request context object with the required fields."
            )

        result = validate_input_fields(request_context, self.fields)
        if not result.valid:
            message = format_validation_errors(result.errors)
            logger.warning(f"[Tool] Validation failed: {'; '.join(result.errors)}")
            raise ToolInputError(message, errors=result.errors)


class ToolInputError(Exception):
    """Raised when the model supplies arguments the workflow would reject."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []
