"""Session-bound JSON-RPC tool surface for agents, served at /mcp.

Terms:
- Session: opened by an `initialize` request carrying `?agent_id=...`; the
  token comes back in the `mcp-session-id` response header and must be sent
  on every later request. DELETE /mcp ends it.
- Tool: a named operation with a Pydantic input model, listed by `tools/list`
  and run by `tools/call`.
- CallerContext: the identity bound to the session, resolved per request and
  passed explicitly to the tool function.

Domain errors raised by tools become tool results with isError=true; only
envelope problems (bad JSON, unknown method, missing session) become JSON-RPC
errors.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidArgumentError, InvalidSessionError, TaskboardError
from .lifecycle import LifecycleEngine
from .sessions import CallerContext, SessionIdentityBinder

logger = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"
DEFAULT_PROTOCOL_VERSION = "2025-03-26"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
MISSING_SESSION = -32000
UNKNOWN_SESSION = -32001


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class RpcRequest(BaseModel):
    jsonrpc: Literal["2.0"]
    id: int | str | None = None
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


class ListMyTasksInput(StrictModel):
    pass


class GetTaskInput(StrictModel):
    task_id: str = Field(alias="taskId", min_length=1, description="The ID of the task")


class UpdateTaskStatusInput(StrictModel):
    task_id: str = Field(alias="taskId", min_length=1, description="The ID of the task")
    status: Literal["in_progress", "review"] = Field(
        description='"in_progress" when you start, "review" to request human review'
    )


class PostTaskResultInput(StrictModel):
    task_id: str = Field(alias="taskId", min_length=1, description="The ID of the task")
    content: str = Field(description="Your result text / summary of what you did")
    file_path: str | None = Field(
        default=None,
        alias="filePath",
        description="Optional: path to a file you wrote under /shared/tasks/{taskId}/",
    )


ToolFn = Callable[[LifecycleEngine, CallerContext, Any], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    description: str
    input_model: type[BaseModel]
    fn: ToolFn


async def list_my_tasks(
    engine: LifecycleEngine, ctx: CallerContext, payload: ListMyTasksInput
) -> dict[str, Any]:
    tasks = engine.list_tasks_for(ctx)
    return {"tasks": [task.model_dump(mode="json") for task in tasks]}


async def get_task(
    engine: LifecycleEngine, ctx: CallerContext, payload: GetTaskInput
) -> dict[str, Any]:
    detail = engine.get_task_detail(payload.task_id)
    return {
        "task": detail.model_dump(
            mode="json", exclude={"assignees", "comments", "results", "latest_results"}
        ),
        "assignees": detail.assignees,
        "comments": [comment.model_dump(mode="json") for comment in detail.comments],
        "results": [result.model_dump(mode="json") for result in detail.results],
    }


async def update_task_status(
    engine: LifecycleEngine, ctx: CallerContext, payload: UpdateTaskStatusInput
) -> dict[str, Any]:
    await engine.set_status(ctx, payload.task_id, payload.status)
    return {"taskId": payload.task_id, "status": payload.status, "ok": True}


async def post_task_result(
    engine: LifecycleEngine, ctx: CallerContext, payload: PostTaskResultInput
) -> dict[str, Any]:
    result = await engine.submit_result(ctx, payload.task_id, payload.content, payload.file_path)
    return {"resultId": result.id, "taskId": payload.task_id, "status": "review", "ok": True}


TOOL_REGISTRY: dict[str, ToolSpec] = {
    "list_my_tasks": ToolSpec(
        description="Returns all tasks assigned to the calling agent (all statuses).",
        input_model=ListMyTasksInput,
        fn=list_my_tasks,
    ),
    "get_task": ToolSpec(
        description="Returns full task details including comments and results.",
        input_model=GetTaskInput,
        fn=get_task,
    ),
    "update_task_status": ToolSpec(
        description=(
            'Update the status of a task. Agents can only set "in_progress" or "review". '
            "Use this when you start working (in_progress) or want human review (review). "
            "Do NOT call this separately when using post_task_result; it automatically "
            "sets status to review."
        ),
        input_model=UpdateTaskStatusInput,
        fn=update_task_status,
    ),
    "post_task_result": ToolSpec(
        description=(
            "Submit your result for a task and automatically move it to review. "
            "Call this when you are done with the task."
        ),
        input_model=PostTaskResultInput,
        fn=post_task_result,
    ),
}


def list_tool_descriptors(registry: dict[str, ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "name": name,
            "description": tool.description,
            "inputSchema": tool.input_model.model_json_schema(by_alias=True),
        }
        for name, tool in registry.items()
    ]


async def call_tool(
    registry: dict[str, ToolSpec],
    engine: LifecycleEngine,
    ctx: CallerContext,
    name: str,
    arguments: dict[str, Any],
) -> dict[str, Any]:
    """Run one tool and wrap its outcome as an RPC tool result."""
    tool = registry.get(name)
    if tool is None:
        raise KeyError(name)
    try:
        payload = tool.input_model.model_validate(arguments)
        output = await tool.fn(engine, ctx, payload)
    except ValidationError as exc:
        error = InvalidArgumentError(
            f"Invalid arguments for tool {name}",
            details={"errors": json.loads(exc.json())},
        )
        return _tool_result(error.to_dict(), is_error=True)
    except TaskboardError as exc:
        logger.info(
            "rpc event=tool_error tool=%s caller=%s code=%s", name, ctx.caller_id, exc.error_code
        )
        return _tool_result(exc.to_dict(), is_error=True)
    return _tool_result(output, is_error=False)


def _tool_result(payload: dict[str, Any], *, is_error: bool) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": json.dumps(payload)}]}
    if is_error:
        result["isError"] = True
    return result


def _rpc_error(
    request_id: int | str | None,
    code: int,
    message: str,
    *,
    status_code: int = 200,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}},
    )


def _rpc_result(
    request_id: int | str | None,
    result: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        content={"jsonrpc": "2.0", "id": request_id, "result": result},
        headers=headers,
    )


def build_rpc_router(registry: dict[str, ToolSpec] | None = None) -> APIRouter:
    tools = registry or dict(TOOL_REGISTRY)
    router = APIRouter()

    @router.post("/mcp")
    async def handle_rpc(request: Request) -> Response:
        binder: SessionIdentityBinder = request.app.state.sessions
        engine: LifecycleEngine = request.app.state.engine

        try:
            raw = await request.json()
        except ValueError:
            return _rpc_error(None, PARSE_ERROR, "Parse error", status_code=400)
        if not isinstance(raw, dict):
            return _rpc_error(
                None, INVALID_REQUEST, "Batch requests are not supported", status_code=400
            )
        try:
            message = RpcRequest.model_validate(raw)
        except ValidationError:
            return _rpc_error(raw.get("id"), INVALID_REQUEST, "Invalid Request", status_code=400)

        token = request.headers.get(SESSION_HEADER)
        new_token: str | None = None
        if token:
            try:
                ctx = binder.resolve(token)
            except InvalidSessionError:
                return _rpc_error(message.id, UNKNOWN_SESSION, "Session not found", status_code=404)
        elif message.method == "initialize":
            try:
                new_token = binder.open_session(request.query_params.get("agent_id"))
            except InvalidArgumentError as exc:
                return _rpc_error(message.id, INVALID_PARAMS, exc.message, status_code=400)
            ctx = binder.resolve(new_token)
        else:
            return _rpc_error(
                message.id,
                MISSING_SESSION,
                "Bad Request: no valid session ID provided",
                status_code=400,
            )

        if message.is_notification:
            return Response(status_code=202)

        if message.method == "initialize":
            result = {
                "protocolVersion": message.params.get("protocolVersion", DEFAULT_PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": request.app.title, "version": request.app.version},
            }
            session_token = new_token or token
            return _rpc_result(message.id, result, headers={SESSION_HEADER: session_token})
        if message.method == "ping":
            return _rpc_result(message.id, {})
        if message.method == "tools/list":
            return _rpc_result(message.id, {"tools": list_tool_descriptors(tools)})
        if message.method == "tools/call":
            name = message.params.get("name")
            arguments = message.params.get("arguments") or {}
            if not isinstance(name, str) or not isinstance(arguments, dict):
                return _rpc_error(
                    message.id, INVALID_PARAMS, "tools/call requires name and arguments"
                )
            if name not in tools:
                return _rpc_error(message.id, INVALID_PARAMS, f"Unknown tool: {name}")
            result = await call_tool(tools, engine, ctx, name, arguments)
            return _rpc_result(message.id, result)
        return _rpc_error(message.id, METHOD_NOT_FOUND, f"Method not found: {message.method}")

    @router.delete("/mcp")
    async def close_session(request: Request) -> Response:
        binder: SessionIdentityBinder = request.app.state.sessions
        token = request.headers.get(SESSION_HEADER)
        if not token:
            return _rpc_error(None, MISSING_SESSION, "Missing session ID", status_code=400)
        try:
            binder.close_session(token)
        except InvalidSessionError:
            return _rpc_error(None, UNKNOWN_SESSION, "Session not found", status_code=404)
        return Response(status_code=204)

    return router
