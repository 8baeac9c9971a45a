"""
A2A Protocol Server
===================
HTTP server implementing JSON-RPC 2.0 for A2A protocol.
Serves the Agent Card, runs tasks through the AgentExecutor, streams
status updates and records cancellation requests.

Routes:
  GET  /.well-known/agent.json       → Agent Card discovery
  GET  /.well-known/agent-card.json  → Agent Card discovery (0.3 path)
  POST /                             → JSON-RPC 2.0 endpoint
  GET  /health                       → Health check
"""

import asyncio
import dataclasses
import json
import logging
import uuid
from typing import Any

from aiohttp import web

from .agent_card import build_agent_card
from .config import resolve_input_fields
from .context_store import ContextStore
from .event_bus import EventBus
from .executor import AgentExecutor, RequestContext
from .reasoning import ChatCompletionsReasoner, Reasoner
from .task_store import (
    Message, TaskStatus, TaskStatusUpdateEvent, TaskStore, now_iso,
    STATE_CANCELED, TERMINAL_STATES,
)
from .tools import WorkflowTool
from .workflow import WorkflowInvoker

logger = logging.getLogger("workflow_agent")

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TASK_NOT_FOUND = -32001
TASK_NOT_CANCELABLE = -32002


class JsonRpcError(Exception):
    """Raised by method handlers to return a JSON-RPC error response."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def create_app(config: dict, reasoner: Reasoner | None = None,
               invoker: WorkflowInvoker | None = None,
               context_store: ContextStore | None = None) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application()

    workflow_cfg = config.setdefault("workflow", {})
    if "fields" not in workflow_cfg:
        resolve_input_fields(config)

    invoker = invoker or WorkflowInvoker(workflow_cfg.get("timeout_seconds"))
    reasoner = reasoner or ChatCompletionsReasoner.from_config(config)
    tool = WorkflowTool(invoker, workflow_cfg["fields"])

    # Store shared state on app
    app["config"] = config
    app["agent_card"] = build_agent_card(config)
    app["invoker"] = invoker
    app["reasoner"] = reasoner
    app["executor"] = AgentExecutor(
        reasoner,
        tool,
        webhook_url=workflow_cfg.get("webhook_url", ""),
        context_store=context_store,
    )
    app["task_store"] = TaskStore()
    app["running"] = {}
    app["background"] = set()

    # Routes
    app.router.add_get("/.well-known/agent.json", handle_agent_card)
    app.router.add_get("/.well-known/agent-card.json", handle_agent_card)
    app.router.add_post("/", handle_jsonrpc)
    app.router.add_get("/health", handle_health)

    # Lifecycle
    app.on_shutdown.append(on_shutdown)

    return app


# ── Agent Card ──────────────────────────────────────────────────

async def handle_agent_card(request: web.Request) -> web.Response:
    """Serve the Agent Card built at startup."""
    return web.json_response(request.app["agent_card"], headers={
        "Access-Control-Allow-Origin": "*",
    })


# ── Health Check ────────────────────────────────────────────────

async def handle_health(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({
        "status": "ok",
        "active_tasks": len(request.app["task_store"].list_active()),
        "timestamp": now_iso(),
    })


# ── JSON-RPC Dispatcher ────────────────────────────────────────

async def handle_jsonrpc(request: web.Request) -> web.StreamResponse:
    """Dispatch JSON-RPC 2.0 requests."""
    # Auth check
    config = request.app["config"]
    auth_config = config.get("authentication", {})
    if not _check_auth(request, auth_config):
        return web.json_response(
            _jsonrpc_error(None, INVALID_REQUEST, "Unauthorized"),
            status=401,
        )

    # Parse request
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response(
            _jsonrpc_error(None, PARSE_ERROR, "Invalid JSON"),
            status=400,
        )

    if not isinstance(body, dict):
        return web.json_response(
            _jsonrpc_error(None, INVALID_REQUEST, "Request must be a JSON object"),
            status=400,
        )

    # JSON-RPC 2.0 version validation
    if body.get("jsonrpc") != "2.0":
        return web.json_response(
            _jsonrpc_error(body.get("id"), INVALID_REQUEST,
                           "Missing or invalid jsonrpc version (must be \"2.0\")"),
            status=400,
        )

    req_id = body.get("id")
    method = body.get("method", "")
    params = body.get("params") or {}

    logger.info(f"[A2A] {method} (id={req_id})")

    # Dispatch to handler
    handlers = {
        "message/send": handle_message_send,
        "message/stream": handle_message_stream,
        "tasks/get": handle_tasks_get,
        "tasks/cancel": handle_tasks_cancel,
        # PascalCase aliases (A2A 1.0 method names)
        "SendMessage": handle_message_send,
        "SendStreamingMessage": handle_message_stream,
        "GetTask": handle_tasks_get,
        "CancelTask": handle_tasks_cancel,
    }

    handler = handlers.get(method)
    if not handler:
        return web.json_response(
            _jsonrpc_error(req_id, METHOD_NOT_FOUND, f"Unknown method: {method}"),
        )

    if not isinstance(params, dict):
        return web.json_response(
            _jsonrpc_error(req_id, INVALID_PARAMS, "params must be an object"),
        )

    try:
        return await handler(request, req_id, params)
    except JsonRpcError as e:
        return web.json_response(_jsonrpc_error(req_id, e.code, e.message))
    except Exception as e:
        logger.exception(f"[A2A] Internal error handling {method}")
        return web.json_response(
            _jsonrpc_error(req_id, INTERNAL_ERROR, str(e)),
        )


# ── message/send ────────────────────────────────────────────────

async def handle_message_send(
    request: web.Request, req_id: Any, params: dict
) -> web.Response:
    """Handle message/send — start or resume a task and return it."""
    app = request.app
    task_id, event_bus = _start_task(app, params)

    configuration = params.get("configuration") or {}
    if configuration.get("blocking") is False:
        # Return once the first event has been recorded; keep folding the rest
        events = event_bus.events()
        first = await anext(events, None)
        if first is not None:
            app["task_store"].apply(first)
        _spawn(app, _drain(app, events))
    else:
        await _drain(app, event_bus.events())

    task = app["task_store"].get(task_id)
    if task is None:
        raise JsonRpcError(INTERNAL_ERROR, f"Task {task_id} ended without publishing any event")
    return web.json_response(_jsonrpc_result(req_id, task.to_dict()))


# ── message/stream ──────────────────────────────────────────────

async def handle_message_stream(
    request: web.Request, req_id: Any, params: dict
) -> web.StreamResponse:
    """Handle message/stream — start or resume a task and stream its events."""
    app = request.app
    task_id, event_bus = _start_task(app, params)
    logger.info(f"[A2A] Task {task_id} streaming")

    # Set up SSE response
    response = web.StreamResponse(
        status=200,
        reason="OK",
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "Access-Control-Allow-Origin": "*",
            "X-Accel-Buffering": "no",
        },
    )
    await response.prepare(request)

    events = event_bus.events()
    try:
        async for event in events:
            app["task_store"].apply(event)
            await _send_sse(response, _jsonrpc_result(req_id, event.to_dict()))
    except ConnectionResetError:
        # Client disconnected; the task keeps running and the store keeps up
        logger.info(f"[A2A] Stream client for task {task_id} disconnected")
        _spawn(app, _drain(app, events))
        return response

    await response.write_eof()
    return response


# ── tasks/get ───────────────────────────────────────────────────

async def handle_tasks_get(
    request: web.Request, req_id: Any, params: dict
) -> web.Response:
    """Handle tasks/get — return the current state of a task."""
    task = _require_task(request.app, params)

    result = task.to_dict()
    history_length = params.get("historyLength")
    if isinstance(history_length, int) and history_length >= 0:
        result["history"] = result["history"][-history_length:] if history_length else []

    return web.json_response(_jsonrpc_result(req_id, result))


# ── tasks/cancel ────────────────────────────────────────────────

async def handle_tasks_cancel(
    request: web.Request, req_id: Any, params: dict
) -> web.Response:
    """Handle tasks/cancel — request cancellation of a task.

    A running task only has the request recorded; its executor publishes
    the canceled event when it reaches its checkpoint. A task waiting for
    input has nothing running and is marked canceled here.
    """
    app = request.app
    task = _require_task(app, params)

    if task.state in TERMINAL_STATES:
        raise JsonRpcError(TASK_NOT_CANCELABLE, f"Task {task.id} is already {task.state}")

    if task.id in app["running"]:
        await app["executor"].cancel_task(task.id)
    else:
        app["task_store"].apply(TaskStatusUpdateEvent(
            task.id, task.context_id, TaskStatus(STATE_CANCELED), final=True,
        ))
        logger.info(f"[A2A] Task {task.id} canceled while idle")

    return web.json_response(_jsonrpc_result(req_id, task.to_dict()))


# ── Internal Helpers ────────────────────────────────────────────

def _start_task(app: web.Application, params: dict) -> tuple[str, EventBus]:
    """Resolve ids for an incoming message and start its executor run."""
    message_data = params.get("message")
    if not isinstance(message_data, dict):
        raise JsonRpcError(INVALID_PARAMS, "Missing message")

    user_message = Message.from_dict(message_data)
    store: TaskStore = app["task_store"]
    task_id = user_message.task_id
    existing = None

    if task_id:
        existing = store.get(task_id)
        if existing is None:
            raise JsonRpcError(TASK_NOT_FOUND, f"Task {task_id} not found")
        if existing.state in TERMINAL_STATES:
            raise JsonRpcError(INVALID_PARAMS, f"Task {task_id} is already {existing.state}")
        if task_id in app["running"]:
            raise JsonRpcError(INVALID_REQUEST, f"Task {task_id} is still running")
        context_id = existing.context_id
        logger.info(f"[A2A] Follow-up for task {task_id} (was {existing.state})")
    else:
        task_id = str(uuid.uuid4())
        context_id = user_message.context_id or str(uuid.uuid4())

    user_message = dataclasses.replace(user_message, task_id=task_id, context_id=context_id)
    if existing is not None:
        existing.append_history(user_message)

    event_bus = EventBus(task_id)
    request_context = RequestContext(user_message, task_id, context_id, existing)

    app["running"][task_id] = asyncio.create_task(
        _execute_task(app, request_context, event_bus)
    )
    return task_id, event_bus


async def _execute_task(app: web.Application, request_context: RequestContext,
                        event_bus: EventBus):
    """Run the executor as a background coroutine."""
    executor: AgentExecutor = app["executor"]
    try:
        await executor.execute(request_context, event_bus)
    except Exception:
        logger.exception(f"[A2A] Executor crashed for task {request_context.task_id}")
    finally:
        app["running"].pop(request_context.task_id, None)
        if not event_bus.closed:
            logger.warning(f"[A2A] Task {request_context.task_id} ended without a final event")
            event_bus.close()


def _spawn(app: web.Application, coro):
    """Run ``coro`` in the background, keeping a reference until it finishes."""
    background: set = app["background"]
    job = asyncio.create_task(coro)
    background.add(job)
    job.add_done_callback(background.discard)
    return job


async def _drain(app: web.Application, events):
    """Fold the remaining events of a task into the task store."""
    async for event in events:
        app["task_store"].apply(event)


async def _send_sse(response: web.StreamResponse, data: dict):
    """Send an SSE event."""
    payload = json.dumps(data)
    message = f"data: {payload}\n\n"
    await response.write(message.encode("utf-8"))


def _require_task(app: web.Application, params: dict):
    task_id = params.get("id") or params.get("taskId") or params.get("task_id")
    if not task_id:
        raise JsonRpcError(INVALID_PARAMS, "Missing task ID")
    task = app["task_store"].get(task_id)
    if not task:
        raise JsonRpcError(TASK_NOT_FOUND, f"Task {task_id} not found")
    return task


def _check_auth(request: web.Request, auth_config: dict) -> bool:
    """Validate request authentication."""
    scheme = auth_config.get("scheme", "none")

    if scheme == "none":
        return True

    expected_key = auth_config.get("api_key", "")
    if not expected_key:
        return True  # No key configured = open access

    # 1. X-API-KEY header
    api_key = request.headers.get("X-API-KEY", "")
    if api_key == expected_key:
        return True

    # 2. Authorization: Bearer <key>
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and auth_header[7:] == expected_key:
        return True

    return False


def _jsonrpc_result(req_id: Any, result: Any) -> dict:
    """Build a JSON-RPC 2.0 success response."""
    return {
        "jsonrpc": "2.0",
        "id": req_id,
        "result": result,
    }


def _jsonrpc_error(req_id: Any, code: int, message: str, data: Any = None) -> dict:
    """Build a JSON-RPC 2.0 error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {
        "jsonrpc": "2.0",
        "id": req_id,
        "error": error,
    }


async def on_shutdown(app: web.Application):
    """Stop running tasks and close outbound sessions."""
    for runner in list(app["running"].values()):
        runner.cancel()
    await app["invoker"].close()
    await app["reasoner"].close()


# ── Server lifecycle ────────────────────────────────────────────

_runner: web.AppRunner | None = None


async def start_server(config: dict, **app_kwargs) -> web.AppRunner:
    """Start the process-wide server instance if it is not running yet."""
    global _runner
    if is_server_running():
        logger.info("[A2A] Server already running")
        return _runner

    host = config.get("host", "0.0.0.0")
    port = config.get("port", 4000)
    runner = web.AppRunner(create_app(config, **app_kwargs))
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    _runner = runner

    logger.info(f"[A2A] Server started on http://{host}:{port}")
    logger.info(f"[A2A] Workflow webhook: {config.get('workflow', {}).get('webhook_url') or '(none)'}")
    return runner


async def stop_server():
    """Stop the process-wide server instance, if any."""
    global _runner
    if _runner is not None:
        await _runner.cleanup()
        _runner = None
    logger.info("[A2A] Server stopped")


def is_server_running() -> bool:
    return _runner is not None
