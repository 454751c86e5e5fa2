"""HTTP surface for the matrix engine.

Caller identity arrives in the ``X-User-Id`` header, set by the upstream auth
layer. Every response uses the ``{success, message?, data?}`` envelope.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, StrictBool
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from creative_matrix_engine import service
from creative_matrix_engine.exceptions import MatrixEngineError, MatrixValidationError, NotFoundError
from creative_matrix_engine.runtime import EngineRuntime

logger = logging.getLogger(__name__)


class LockRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    locked: StrictBool
    locked_value: str | None = None


def _envelope(data: Any = None, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def _failure(status_code: int, message: str, error: str | None = None, errors: list[str] | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return x_user_id


def create_app(runtime: EngineRuntime) -> FastAPI:
    store = runtime.store
    orchestrator = runtime.orchestrator

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        orchestrator.shutdown(wait=False, cancel_pending=True)

    app = FastAPI(title="creative_matrix_engine", lifespan=lifespan)

    @app.exception_handler(MatrixValidationError)
    async def _validation_error(_: Request, exc: MatrixValidationError) -> JSONResponse:
        return _failure(400, str(exc).splitlines()[0], errors=exc.errors)

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _failure(404, str(exc))

    @app.exception_handler(MatrixEngineError)
    async def _engine_error(request: Request, exc: MatrixEngineError) -> JSONResponse:
        logger.error("Engine error on %s %s: %s", request.method, request.url.path, exc)
        return _failure(500, "Matrix operation failed", error=str(exc))

    @app.exception_handler(RequestValidationError)
    async def _bad_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [f"- {'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in exc.errors()]
        return _failure(400, "Invalid request body", errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _failure(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _failure(500, "Internal server error")

    @app.post("/matrices", status_code=201)
    def create_matrix(payload: dict[str, Any] = Body(...), user_id: str = Depends(current_user)) -> dict:
        matrix = service.create_matrix(store, payload, user_id=user_id)
        return _envelope(matrix.to_dict(), "Matrix configuration created successfully")

    @app.get("/matrices/campaign/{campaign_id}")
    def list_matrices(campaign_id: str, _: str = Depends(current_user)) -> dict:
        return _envelope([matrix.to_dict() for matrix in service.list_matrices(store, campaign_id)])

    @app.get("/matrices/{matrix_id}")
    def get_matrix(matrix_id: str, _: str = Depends(current_user)) -> dict:
        return _envelope(service.get_matrix(store, matrix_id).to_dict())

    @app.put("/matrices/{matrix_id}")
    def update_matrix(matrix_id: str, payload: dict[str, Any] = Body(...), _: str = Depends(current_user)) -> dict:
        matrix = service.update_matrix(store, matrix_id, payload)
        return _envelope(matrix.to_dict(), "Matrix configuration updated successfully")

    @app.post("/matrices/{matrix_id}/combinations")
    def generate_combinations(
        matrix_id: str,
        payload: dict[str, Any] | None = Body(default=None),
        _: str = Depends(current_user),
    ) -> dict:
        matrix = service.generate_combinations(
            store,
            matrix_id,
            (payload or {}).get("options") or {},
            default_max_rows=runtime.config.default_max_rows,
            orchestrator=orchestrator,
        )
        return _envelope(matrix.to_dict(), "Combinations generated successfully")

    @app.post("/matrices/{matrix_id}/rows/{row_id}/render")
    def render_row(matrix_id: str, row_id: str, wait: bool = False, _: str = Depends(current_user)) -> dict:
        handle = service.render_row(orchestrator, matrix_id, row_id)
        outcome = handle.wait() if wait else handle.outcome()
        _, row = store.get(matrix_id).find_row(row_id) or (None, None)
        data = {"jobId": handle.job_id, "outcome": outcome.to_dict(), "row": row.to_dict() if row else None}
        message = "Render job started successfully" if not wait else f"Render job finished with status {outcome.status}"
        return _envelope(data, message)

    @app.post("/matrices/{matrix_id}/render-all")
    def render_all(matrix_id: str, wait: bool = False, _: str = Depends(current_user)) -> dict:
        result = service.render_all(orchestrator, matrix_id, wait=wait)
        return _envelope(result.to_dict(), result.message)

    @app.put("/matrices/{matrix_id}/rows/{row_id}/lock")
    def lock_row(matrix_id: str, row_id: str, body: LockRequest, _: str = Depends(current_user)) -> dict:
        matrix = service.set_row_lock(store, matrix_id, row_id, body.locked)
        _, row = matrix.find_row(row_id)
        return _envelope(row.to_dict(), f"Row {'locked' if body.locked else 'unlocked'} successfully")

    @app.put("/matrices/{matrix_id}/slots/{slot_id}/lock")
    def lock_slot(matrix_id: str, slot_id: str, body: LockRequest, _: str = Depends(current_user)) -> dict:
        matrix = service.set_slot_lock(store, matrix_id, slot_id, body.locked, body.locked_value)
        _, slot = matrix.find_slot(slot_id)
        return _envelope(slot.to_dict(), f"Slot {'locked' if body.locked else 'unlocked'} successfully")

    @app.get("/matrices/{matrix_id}/progress")
    def batch_progress(matrix_id: str, _: str = Depends(current_user)) -> dict:
        return _envelope(service.get_batch_progress(store, matrix_id, orchestrator).to_dict())

    @app.get("/render-queue")
    def render_queue(_: str = Depends(current_user)) -> dict:
        return _envelope(orchestrator.queue_status())

    return app
