"""
Reasoning
=========
Runs the agent prompt against an OpenAI-compatible chat completion API
(LM Studio, Ollama, OpenAI) with the workflow tool attached.

The model may call tools any number of times up to ``max_tool_rounds``.
Tool input and workflow errors go back to the model as tool results so it
can correct itself; anything else propagates and fails the task.
"""

import asyncio
import json
import logging
from typing import Any

import aiohttp

from .tools import ToolInputError
from .workflow import WorkflowError

logger = logging.getLogger("workflow_agent")

SYSTEM_PROMPT = """You are an agent that helps users by running an automation workflow on their behalf.
{goal_section}
Current time: {now}

When the user's request needs the workflow, call the `{tool_name}` tool with:
- webhookUrl: {webhook_url}
- requestContext: an object built from the conversation with these fields:
{fields_section}

If a required field cannot be found in the conversation, ask the user for it
instead of calling the tool. If the tool returns an error, correct the
arguments and call it again. Summarize the workflow result for the user.

The last line of every reply must contain only one of these words:
COMPLETED            - the request has been fully handled
AWAITING_USER_INPUT  - you need more information from the user
"""


def build_system_prompt(goal: str | None, now: str, webhook_url: str,
                        input_fields=(), tool_name: str = "call_workflow") -> str:
    """Render the agent system prompt."""
    goal_section = f"\nYour goal: {goal}\n" if goal else ""
    if input_fields:
        fields_section = "\n".join(
            f"  - {f.field_name} ({f.field_type}, {'required' if f.required else 'optional'})"
            for f in input_fields
        )
    else:
        fields_section = "  (no declared fields; pass the relevant details as an object)"
    return SYSTEM_PROMPT.format(
        goal_section=goal_section,
        now=now,
        tool_name=tool_name,
        webhook_url=webhook_url or "(not configured)",
        fields_section=fields_section,
    )


class Reasoner:
    """Opaque prompt-execution capability used by the executor."""

    async def generate(self, messages: list[dict], *, goal: str | None = None,
                       now: str = "", webhook_url: str = "", input_fields=(),
                       tools=()) -> str:
        """Return the model's final reply text for ``messages``."""
        raise NotImplementedError

    async def close(self):
        pass


class ChatCompletionsReasoner(Reasoner):
    """Chat completion client with a tool-call loop."""

    def __init__(self, api_base: str, model: str = "", api_key: str = "",
                 temperature: float = 0.1, max_tool_rounds: int = 8,
                 timeout_seconds: float | None = None):
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tool_rounds = max_tool_rounds
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_config(cls, config: dict) -> "ChatCompletionsReasoner":
        model_cfg = config.get("model", {})
        return cls(
            api_base=model_cfg.get("api_base", "http://localhost:11434/v1"),
            model=model_cfg.get("model", ""),
            api_key=model_cfg.get("api_key", ""),
            temperature=model_cfg.get("temperature", 0.1),
            max_tool_rounds=model_cfg.get("max_tool_rounds", 8),
            timeout_seconds=model_cfg.get("timeout_seconds"),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def generate(self, messages: list[dict], *, goal: str | None = None,
                       now: str = "", webhook_url: str = "", input_fields=(),
                       tools=()) -> str:
        tool_map = {t.name: t for t in tools}
        tool_name = next(iter(tool_map), "call_workflow")
        chat: list[dict] = [{
            "role": "system",
            "content": build_system_prompt(goal, now, webhook_url, input_fields, tool_name),
        }]
        chat.extend(to_chat_message(m) for m in messages)
        definitions = [t.definition() for t in tools]

        rounds = 0
        while True:
            reply = await self._complete(chat, definitions)
            calls = extract_tool_calls(reply)
            if not calls:
                return reply.get("content") or ""

            rounds += 1
            if rounds > self.max_tool_rounds:
                raise ReasoningError(
                    f"Model kept calling tools after {self.max_tool_rounds} rounds"
                )

            chat.append({
                "role": "assistant",
                "content": reply.get("content") or "",
                "tool_calls": [_wire_tool_call(c) for c in calls],
            })
            for call in calls:
                result = await self._run_tool(tool_map, call)
                chat.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": result,
                })

    async def _run_tool(self, tool_map: dict, call: dict) -> str:
        tool = tool_map.get(call["name"])
        if tool is None:
            logger.warning(f"[Reasoning] Model called unknown tool {call['name']!r}")
            return f"Error: Unknown tool '{call['name']}'. Available: {', '.join(tool_map) or 'none'}"
        try:
            return await tool.run(call["arguments"])
        except (ToolInputError, WorkflowError) as e:
            logger.warning(f"[Reasoning] Tool {call['name']} failed: {e}")
            return f"Error: {e}"

    async def _complete(self, chat: list[dict], tools: list[dict]) -> dict:
        """Send one chat completion request and return the assistant message."""
        session = await self._get_session()
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: dict[str, Any] = {
            "messages": chat,
            "temperature": self.temperature,
            "stream": False,
        }
        if self.model:
            payload["model"] = self.model
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        url = f"{self.api_base}/chat/completions"
        try:
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text(errors="replace")
                    raise ReasoningError(f"Model API returned HTTP {resp.status}: {text[:200]}")
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            raise ReasoningError(f"Model request timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            raise ReasoningError(f"Cannot connect to model API at {self.api_base}: {e}")
        except ValueError as e:
            raise ReasoningError(f"Model API returned an undecodable body: {e}")

        try:
            return data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise ReasoningError(f"Unexpected API response format: {e}")


def to_chat_message(message: dict) -> dict:
    """Convert a translated history message to chat completion format."""
    role = "assistant" if message.get("role") == "model" else "user"
    text = "\n".join(c.get("text", "") for c in message.get("content", []))
    return {"role": role, "content": text}


def extract_tool_calls(message: dict) -> list[dict]:
    """Pull tool calls out of an assistant message.

    Handles the OpenAI shape ``{"function": {"name", "arguments"}}`` and the
    flat ``{"name", "arguments"}`` shape. ``arguments`` may be a JSON
    string or an object; undecodable arguments come back as None.
    """
    calls = []
    for idx, tc in enumerate(message.get("tool_calls") or []):
        if not isinstance(tc, dict):
            continue
        func = tc.get("function") or tc
        name = func.get("name", "")
        if not name:
            continue
        args = func.get("arguments", {})
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except (json.JSONDecodeError, ValueError):
                args = None
        calls.append({
            "id": tc.get("id") or f"call_{idx}",
            "name": name,
            "arguments": args,
        })
    return calls


def _wire_tool_call(call: dict) -> dict:
    return {
        "id": call["id"],
        "type": "function",
        "function": {
            "name": call["name"],
            "arguments": json.dumps(call["arguments"]),
        },
    }


class ReasoningError(Exception):
    """Raised when the model API call or tool loop fails."""
    pass
