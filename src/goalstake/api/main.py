"""
goalstake REST API
==================
FastAPI surface over the tree repository, ratio engine, settlement engine
and transfer codec, plus the payment-processor webhook.

Run:
    uvicorn goalstake.api.main:app
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from goalstake import __version__
from goalstake.api.models import (
    AddStepRequest,
    AddTodoRequest,
    CommitRequest,
    CommitResponse,
    ConfirmRequest,
    CreatedResponse,
    CreateGoalRequest,
    DeletedResponse,
    GenerateRequest,
    HealthResponse,
    ImportRequest,
    RecomputeResponse,
    UpdateTitleRequest,
    UpdateTodoRequest,
)
from goalstake.core.config import get_config
from goalstake.core.container import Container, build_container
from goalstake.core.exceptions import ErrorKind, GoalstakeError, is_debug_mode
from goalstake.core.logging_config import configure_logging
from goalstake.core.paths import GoalAddress
from goalstake.storage.redis_store import RedisDocumentStore

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.GATEWAY_FAILURE: 502,
    ErrorKind.BACKEND_UNAVAILABLE: 503,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.INTERNAL: 500,
}

GOAL_ROUTE = "/users/{user_id}/categories/{category_id}/goals/{goal_id}"


def get_container(request: Request) -> Container:
    return request.app.state.container


def goal_address(user_id: str, category_id: str, goal_id: str) -> GoalAddress:
    return GoalAddress(user_id=user_id, goal_id=goal_id, category_id=category_id)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Build the application. A prebuilt ``container`` skips config loading and
    is left open on shutdown (the caller owns it).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        if owned:
            config = get_config()
            configure_logging(config.observability.log_level, config.observability.json_logs)
            logger.info("Building dependency container...")
            app.state.container = build_container(config)
        else:
            app.state.container = container

        store = app.state.container.store
        if isinstance(store, RedisDocumentStore) and not await store.check_health():
            logger.warning("Redis connection failed at startup.")

        yield

        if owned:
            logger.info("Closing store and gateway clients...")
            await app.state.container.close()

    app = FastAPI(
        title="goalstake API",
        description="Goal trees with staked commitments",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(GoalstakeError)
    async def goalstake_exception_handler(request: Request, exc: GoalstakeError):
        if exc.recoverable:
            logger.warning(f"Recoverable error: {exc}")
        else:
            logger.error(f"Irrecoverable error: {exc}")
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(exc.kind, 500),
            content=exc.to_dict(include_traceback=is_debug_mode()),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health(container: Container = Depends(get_container)):
        store = container.store
        connected = True
        if isinstance(store, RedisDocumentStore):
            connected = await store.check_health()
        return {
            "status": "healthy" if connected else "degraded",
            "store_backend": store.backend_name,
            "store_connected": connected,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- Tree ---

    @app.post("/users/{user_id}/categories/{category_id}/goals", response_model=CreatedResponse)
    async def create_goal(user_id: str, category_id: str, req: CreateGoalRequest,
                          container: Container = Depends(get_container)):
        goal = await container.repository.add_goal(user_id, category_id, req.title)
        return {"success": True, "id": goal.goal_id}

    @app.get(GOAL_ROUTE)
    async def get_goal(user_id: str, category_id: str, goal_id: str,
                       container: Container = Depends(get_container)) -> Dict[str, Any]:
        goal = goal_address(user_id, category_id, goal_id)
        document = await container.codec.export(goal)
        document["state"] = (await container.settlement.state(goal)).value
        return document

    @app.patch(GOAL_ROUTE)
    async def update_goal(user_id: str, category_id: str, goal_id: str, req: UpdateTitleRequest,
                          container: Container = Depends(get_container)):
        await container.repository.update_goal(goal_address(user_id, category_id, goal_id), title=req.title)
        return {"success": True}

    @app.delete(GOAL_ROUTE, response_model=DeletedResponse)
    async def delete_goal(user_id: str, category_id: str, goal_id: str,
                          container: Container = Depends(get_container)):
        deleted = await container.repository.delete_goal(goal_address(user_id, category_id, goal_id))
        return {"success": True, "deleted": deleted}

    @app.post(GOAL_ROUTE + "/steps", response_model=CreatedResponse)
    async def add_step(user_id: str, category_id: str, goal_id: str, req: AddStepRequest,
                       container: Container = Depends(get_container)):
        parent = goal_address(user_id, category_id, goal_id).node(*req.parent_path)
        step = await container.repository.add_step(parent, req.title)
        return {"success": True, "id": step.node_id}

    @app.delete(GOAL_ROUTE + "/steps/{step_path:path}", response_model=DeletedResponse)
    async def delete_step(user_id: str, category_id: str, goal_id: str, step_path: str,
                          container: Container = Depends(get_container)):
        node = goal_address(user_id, category_id, goal_id).node(*step_path.strip("/").split("/"))
        deleted = await container.repository.delete_step(node)
        return {"success": True, "deleted": deleted}

    @app.post(GOAL_ROUTE + "/todos", response_model=CreatedResponse)
    async def add_todo(user_id: str, category_id: str, goal_id: str, req: AddTodoRequest,
                       container: Container = Depends(get_container)):
        node = goal_address(user_id, category_id, goal_id).node(*req.path)
        todo_id = await container.repository.add_todo(node, req.task, is_finished=req.is_finished,
                                                      weight=req.weight)
        return {"success": True, "id": todo_id}

    @app.patch(GOAL_ROUTE + "/todos/{todo_id}")
    async def update_todo(user_id: str, category_id: str, goal_id: str, todo_id: str, req: UpdateTodoRequest,
                          container: Container = Depends(get_container)):
        goal = goal_address(user_id, category_id, goal_id)
        todo = await container.repository.update_todo(
            goal.node(*req.path), todo_id, task=req.task, is_finished=req.is_finished, weight=req.weight,
        )
        ratio = None
        if req.is_finished is not None:
            ratio = await container.ratio_engine.recompute_goal(goal)
        return {"success": True, "id": todo.id, "isFinished": todo.is_finished, "ratio": ratio}

    @app.delete(GOAL_ROUTE + "/todos/{todo_id}", response_model=DeletedResponse)
    async def delete_todo(user_id: str, category_id: str, goal_id: str, todo_id: str, path: str = "",
                          container: Container = Depends(get_container)):
        step_ids = [part for part in path.split("/") if part]
        node = goal_address(user_id, category_id, goal_id).node(*step_ids)
        deleted = await container.repository.delete_todo(node, todo_id)
        return {"success": True, "deleted": deleted}

    @app.post(GOAL_ROUTE + "/recompute", response_model=RecomputeResponse)
    async def recompute(user_id: str, category_id: str, goal_id: str,
                        container: Container = Depends(get_container)):
        ratio = await container.ratio_engine.recompute_goal(goal_address(user_id, category_id, goal_id))
        category_ratio = await container.ratio_engine.get_category_ratio(user_id, category_id)
        return {"ratio": ratio, "category_ratio": category_ratio}

    # --- Settlement ---

    @app.post(GOAL_ROUTE + "/commit", response_model=CommitResponse)
    async def commit(user_id: str, category_id: str, goal_id: str, req: CommitRequest,
                     container: Container = Depends(get_container)):
        result = await container.settlement.commit(
            goal_address(user_id, category_id, goal_id), req.amount, return_origin=req.origin,
        )
        return {"url": result.url, "session_id": result.session_id}

    @app.post(GOAL_ROUTE + "/confirm")
    async def confirm(user_id: str, category_id: str, goal_id: str, req: ConfirmRequest,
                      container: Container = Depends(get_container)):
        result = await container.settlement.confirm(goal_address(user_id, category_id, goal_id), req.session_id)
        return result.to_dict()

    @app.post(GOAL_ROUTE + "/clear-pending")
    async def clear_pending(user_id: str, category_id: str, goal_id: str,
                            container: Container = Depends(get_container)):
        result = await container.settlement.clear_pending(goal_address(user_id, category_id, goal_id))
        return result.to_dict()

    @app.post(GOAL_ROUTE + "/settle")
    async def settle(user_id: str, category_id: str, goal_id: str,
                     container: Container = Depends(get_container)):
        result = await container.settlement.settle(goal_address(user_id, category_id, goal_id))
        return result.to_dict()

    @app.post("/webhooks/payment")
    async def payment_webhook(request: Request, container: Container = Depends(get_container)):
        payload = await request.body()
        event = container.gateway.parse_event(payload, request.headers.get("Stripe-Signature"))
        if event is None:
            return {"received": True, "handled": False}
        result = await container.settlement.handle_payment_completed(event)
        return {"received": True, "handled": True, **result.to_dict()}

    # --- Transfer ---

    @app.get(GOAL_ROUTE + "/export")
    async def export_goal(user_id: str, category_id: str, goal_id: str,
                          container: Container = Depends(get_container)) -> Dict[str, Any]:
        return await container.codec.export(goal_address(user_id, category_id, goal_id))

    @app.post("/users/{user_id}/categories/{category_id}/import")
    async def import_goal(user_id: str, category_id: str, req: ImportRequest,
                          container: Container = Depends(get_container)):
        result = await container.codec.import_goal(user_id, category_id, req.goal_data, req.id_policy)
        return result.to_dict()

    @app.post("/users/{user_id}/categories/{category_id}/generate")
    async def generate_goal(user_id: str, category_id: str, req: GenerateRequest,
                            container: Container = Depends(get_container)):
        result = await container.assistant.materialize(req.prompt, container.codec, user_id, category_id)
        return result.to_dict()

    return app


app = create_app()
