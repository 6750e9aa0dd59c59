"""FastAPI application wiring for the task board service.

Terms used in this file:
- Application factory: `create_app` builds a fully wired app; tests call it with
  an in-memory store and a fake fleet.
- app.state: holds the shared runtime objects (store, fleet client, dispatcher,
  lifecycle engine, session binder) constructed once per app.
- Lifespan: on shutdown, in-flight notification fan-outs are awaited and the
  fleet HTTP client is closed.

REST routes are the human reviewer's surface; agents use the RPC surface that
rpc.py mounts at /mcp.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .app.errors import register_exception_handlers
from .app.fleet import FleetClient, FleetGateway
from .app.lifecycle import LifecycleEngine
from .app.memory import InMemoryTaskStore
from .app.models import (
    AgentListResponse,
    CommentResponse,
    CreateCommentRequest,
    CreateTaskRequest,
    DeleteTaskResponse,
    ReviewDecisionRequest,
    TaskDetailResponse,
    TaskListResponse,
    TaskResponse,
)
from .app.notifications import NotificationDispatcher
from .app.rpc import SESSION_HEADER, build_rpc_router
from .app.sessions import SessionIdentityBinder
from .app.settings import Settings, get_settings
from .app.storage import PostgresTaskStore, TaskStore

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def build_store(settings: Settings) -> TaskStore:
    """Pick the storage backend; fail fast when Postgres is selected without a URL."""
    if settings.store_backend == "memory":
        return InMemoryTaskStore()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set TASKBOARD_DATABASE_URL or DATABASE_URL, "
            "or TASKBOARD_STORE_BACKEND=memory."
        )
    return PostgresTaskStore(database_url)


def create_app(
    *,
    store: TaskStore | None = None,
    fleet: FleetGateway | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    task_store = store or build_store(settings)
    fleet_gateway = fleet or FleetClient(
        base_url=settings.fleet_api_url,
        token=settings.fleet_api_token,
        push_timeout_s=settings.fleet_push_timeout_s,
        lookup_timeout_s=settings.fleet_lookup_timeout_s,
    )
    dispatcher = NotificationDispatcher(
        fleet_gateway, push_timeout_s=settings.fleet_push_timeout_s
    )
    engine = LifecycleEngine(store=task_store, fleet=fleet_gateway, dispatcher=dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "taskboard event=startup env=%s store=%s fleet_api_url=%s",
            settings.app_env,
            type(task_store).__name__,
            settings.fleet_api_url,
        )
        yield
        await dispatcher.drain()
        await fleet_gateway.aclose()
        logger.info("taskboard event=shutdown")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.state.debug = settings.app_debug
    app.state.settings = settings
    app.state.store = task_store
    app.state.fleet = fleet_gateway
    app.state.dispatcher = dispatcher
    app.state.engine = engine
    app.state.sessions = SessionIdentityBinder()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )
    register_exception_handlers(app)
    app.include_router(build_rpc_router())

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/agents", response_model=AgentListResponse)
    async def list_agents() -> AgentListResponse:
        # UpstreamUnavailableError propagates and is rendered as 502.
        agents = await app.state.fleet.list_running_agents()
        return AgentListResponse(agents=agents)

    @app.get("/tasks", response_model=TaskListResponse)
    async def list_tasks() -> TaskListResponse:
        return TaskListResponse(tasks=app.state.engine.list_tasks())

    @app.post("/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(payload: CreateTaskRequest) -> TaskResponse:
        task = await app.state.engine.create_task(
            payload.title, payload.description, payload.assignee_ids
        )
        return TaskResponse(task=task)

    @app.get("/tasks/{task_id}", response_model=TaskDetailResponse)
    async def get_task(task_id: str) -> TaskDetailResponse:
        return TaskDetailResponse(task=app.state.engine.get_task_detail(task_id))

    @app.patch("/tasks/{task_id}/status", response_model=TaskDetailResponse)
    async def review_task(task_id: str, payload: ReviewDecisionRequest) -> TaskDetailResponse:
        detail = await app.state.engine.review_decision(task_id, payload.action, payload.feedback)
        return TaskDetailResponse(task=detail)

    @app.post("/tasks/{task_id}/comments", response_model=CommentResponse, status_code=201)
    async def add_comment(task_id: str, payload: CreateCommentRequest) -> CommentResponse:
        comment = app.state.engine.add_comment(task_id, payload.content)
        return CommentResponse(comment=comment)

    @app.delete("/tasks/{task_id}", response_model=DeleteTaskResponse)
    async def delete_task(task_id: str) -> DeleteTaskResponse:
        app.state.engine.delete_task(task_id)
        return DeleteTaskResponse(ok=True)

    return app


def run() -> None:
    """Console entry point: `taskboard-api`."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(
        "taskboard_api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )
