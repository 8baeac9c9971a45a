"""
Workflow Invoker
================
Triggers the external automation workflow by POSTing the request context
to its webhook URL, and normalizes the response into a single value.

Response handling:
  JSON content type, empty body   → {}
  JSON content type, bad JSON     → {"rawText": body}
  JSON content type, valid JSON   → parsed value
  any other content type          → body text
"""

import asyncio
import json
import logging
from typing import Any

import aiohttp

logger = logging.getLogger("workflow_agent")


class WorkflowInvoker:
    """Single-shot HTTP client for the workflow webhook. No retries."""

    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def invoke(self, endpoint: str, record: Any) -> Any:
        """POST ``{"requestContext": record}`` to ``endpoint``.

        Raises WorkflowError on a non-2xx response or connection failure.
        """
        if not endpoint:
            raise WorkflowError("No workflow webhook URL configured")

        session = await self._get_session()
        logger.info(f"[Workflow] POST {endpoint}")

        try:
            async with session.post(
                endpoint,
                json={"requestContext": record},
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as resp:
                # Invalid UTF-8 is replaced, not raised
                body = await resp.text(errors="replace")
                content_type = resp.headers.get("Content-Type", "")
                logger.debug(f"[Workflow] HTTP {resp.status} ({content_type or 'no content type'})")

                if not 200 <= resp.status < 300:
                    logger.error(f"[Workflow] Error response {resp.status}: {body[:200]}")
                    raise WorkflowError(
                        f"Workflow request failed with status {resp.status}: {body}",
                        status=resp.status,
                        body=body,
                    )

        except asyncio.TimeoutError:
            raise WorkflowError(f"Workflow request timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            raise WorkflowError(f"Connection to workflow webhook failed: {e}")

        return normalize_response(content_type, body)


def normalize_response(content_type: str | None, body: str) -> Any:
    """Turn a successful workflow response into the tool's return value."""
    if content_type and "application/json" in content_type.lower():
        if not body or not body.strip():
            logger.info("[Workflow] Empty JSON response body")
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            logger.warning(f"[Workflow] Malformed JSON response ({e}); returning raw text")
            return {"rawText": body}
    return body


class WorkflowError(Exception):
    """Raised when the workflow webhook call fails."""

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body
