"""Render Orchestrator: dispatches row renders on a bounded worker pool.

Each dispatched row gets its own job: the row is moved to ``rendering`` and
persisted, then the render collaborator is called on a pool thread. The job
settles the row exactly once, as ``rendered`` or ``failed``; whichever of
completion, failure, timeout or cancellation comes first wins and later
signals are dropped. A failing row never affects its siblings.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from creative_matrix_engine.exceptions import (
    MatrixEngineError,
    MatrixValidationError,
    NotFoundError,
    RenderDispatchError,
    RowNotFoundError,
    RowStatusConflictError,
)
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row, RowStatus
from creative_matrix_engine.output.metrics import Timer, utc_now_iso
from creative_matrix_engine.store.matrix_store import MatrixStore

from .base import CancellationToken, RenderProvider, RenderRequest, build_render_request

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_RENDERS = 5
DEFAULT_RENDER_TIMEOUT_SECONDS = 300.0

_REDISPATCHABLE: tuple[RowStatus, ...] = ("draft", "rendered", "failed")

_RENDER_BOOKKEEPING = (
    "status",
    "render_job_id",
    "render_started_at",
    "render_completed_at",
    "output_url",
    "last_error",
)


@dataclass(slots=True)
class RowRenderOutcome:
    row_id: str
    status: RowStatus
    dispatched: bool
    render_job_id: str | None = None
    output_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "rowId": self.row_id,
            "status": self.status,
            "dispatched": self.dispatched,
            "renderJobId": self.render_job_id,
            "outputUrl": self.output_url,
            "error": self.error,
        }


@dataclass(slots=True)
class BatchRenderResult:
    matrix_id: str
    total_eligible: int
    dispatched: int = 0
    undispatched: int = 0
    rendered: int = 0
    failed: int = 0
    in_progress: int = 0
    execution_time_seconds: float = 0.0
    outcomes: list[RowRenderOutcome] = field(default_factory=list)

    @property
    def nothing_to_render(self) -> bool:
        return self.total_eligible == 0

    @property
    def message(self) -> str:
        if self.nothing_to_render:
            return "No draft rows to render"
        return f"Started rendering {self.dispatched} out of {self.total_eligible} rows"

    def to_dict(self) -> dict:
        return {
            "matrixId": self.matrix_id,
            "nothingToRender": self.nothing_to_render,
            "totalRows": self.total_eligible,
            "dispatchedRows": self.dispatched,
            "undispatchedRows": self.undispatched,
            "renderedRows": self.rendered,
            "failedRows": self.failed,
            "inProgressRows": self.in_progress,
            "executionTimeSeconds": self.execution_time_seconds,
            "rows": [outcome.to_dict() for outcome in self.outcomes],
        }


class RenderJobHandle:
    """Caller-side view of one dispatched render job."""

    def __init__(self, orchestrator: RenderOrchestrator, matrix_id: str, row_id: str, job_id: str) -> None:
        self.matrix_id = matrix_id
        self.row_id = row_id
        self.job_id = job_id
        self.cancel_token = CancellationToken()
        self.future: Future | None = None
        self._orchestrator = orchestrator
        self._settled = threading.Event()
        self._settle_lock = threading.Lock()
        self._outcome: RowRenderOutcome | None = None

    @property
    def done(self) -> bool:
        return self._settled.is_set()

    def outcome(self) -> RowRenderOutcome:
        if self._outcome is not None:
            return self._outcome
        return RowRenderOutcome(row_id=self.row_id, status="rendering", dispatched=True, render_job_id=self.job_id)

    def wait(self, timeout: float | None = None) -> RowRenderOutcome:
        self._settled.wait(timeout)
        return self.outcome()

    def cancel(self, reason: str = "Render cancelled") -> RowRenderOutcome:
        return self._orchestrator.cancel(self, reason)


class RenderOrchestrator:
    def __init__(
        self,
        store: MatrixStore,
        provider: RenderProvider,
        max_concurrent_renders: int = DEFAULT_MAX_CONCURRENT_RENDERS,
        render_timeout_seconds: float | None = DEFAULT_RENDER_TIMEOUT_SECONDS,
        render_locked_rows: bool = True,
    ) -> None:
        if max_concurrent_renders < 1:
            raise ValueError("max_concurrent_renders must be at least 1")
        self.store = store
        self.provider = provider
        self.max_concurrent_renders = max_concurrent_renders
        self.render_timeout_seconds = render_timeout_seconds
        self.render_locked_rows = render_locked_rows
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_renders, thread_name_prefix="matrix-render")
        self._state_lock = threading.Lock()
        self._handles: dict[str, RenderJobHandle] = {}
        self._active = 0

    def __enter__(self) -> RenderOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def render_row(self, matrix_id: str, row_id: str) -> RenderJobHandle:
        """Dispatch one row. Re-rendering a ``rendered`` or ``failed`` row is allowed."""
        matrix = self.store.get(matrix_id)
        found = matrix.find_row(row_id)
        if found is None:
            raise RowNotFoundError(matrix_id, row_id)
        _, row = found

        if row.status == "rendering":
            raise MatrixValidationError(f"Row {row_id} is already rendering (job {row.render_job_id})")
        if row.locked and not self.render_locked_rows:
            raise MatrixValidationError(f"Row {row_id} is locked and locked rows are not rendered")
        return self._dispatch(matrix, row, _REDISPATCHABLE)

    def render_all(self, matrix_id: str, wait: bool = True) -> BatchRenderResult:
        """Dispatch every ``draft`` row concurrently.

        With ``wait`` the call returns once every dispatched row has settled;
        otherwise it returns right after dispatch with rows still in progress.
        """
        timer = Timer()
        matrix = self.store.get(matrix_id)
        eligible = [
            (index, row)
            for index, row in enumerate(matrix.rows)
            if row.status == "draft" and (self.render_locked_rows or not row.locked)
        ]
        result = BatchRenderResult(matrix_id=matrix.id, total_eligible=len(eligible))
        if not eligible:
            logger.info("No draft rows to render for matrix %s", matrix.id)
            return result

        handles: dict[int, RenderJobHandle] = {}
        outcomes: dict[int, RowRenderOutcome] = {}
        for index, row in sorted(eligible, key=lambda item: (item[1].priority, item[0])):
            try:
                handles[index] = self._dispatch(matrix, row, ("draft",))
            except MatrixEngineError as exc:
                logger.warning("Could not dispatch row %s of matrix %s: %s", row.id, matrix.id, exc)
                status = exc.status if isinstance(exc, RowStatusConflictError) else row.status
                outcomes[index] = RowRenderOutcome(row_id=row.id, status=status, dispatched=False, error=str(exc))

        for index, handle in handles.items():
            outcomes[index] = handle.wait() if wait else handle.outcome()

        result.outcomes = [outcomes[index] for index in sorted(outcomes)]
        result.dispatched = len(handles)
        result.undispatched = len(eligible) - len(handles)
        for outcome in result.outcomes:
            if not outcome.dispatched:
                continue
            if outcome.status == "rendered":
                result.rendered += 1
            elif outcome.status == "failed":
                result.failed += 1
            else:
                result.in_progress += 1
        result.execution_time_seconds = round(timer.elapsed(), 3)

        logger.info(
            "Render batch for matrix %s: %d eligible, %d dispatched, %d rendered, %d failed",
            matrix.id,
            result.total_eligible,
            result.dispatched,
            result.rendered,
            result.failed,
        )
        return result

    def cancel(self, handle: RenderJobHandle, reason: str = "Render cancelled") -> RowRenderOutcome:
        if handle.done:
            return handle.outcome()
        handle.cancel_token.cancel(reason)
        if handle.future is not None and handle.future.cancel():
            # Never started, so _run_job will not release it.
            self._release(handle)
        logger.info("Cancelled render job %s for row %s: %s", handle.job_id, handle.row_id, reason)
        return self._settle(handle, "failed", last_error=reason)

    def queue_status(self) -> dict[str, int]:
        with self._state_lock:
            pending = len(self._handles)
            active = self._active
        return {
            "maxConcurrentRenders": self.max_concurrent_renders,
            "activeRenders": active,
            "queuedRenders": max(0, pending - active),
        }

    def active_row_ids(self, matrix_id: str) -> set[str]:
        with self._state_lock:
            return {handle.row_id for handle in self._handles.values() if handle.matrix_id == matrix_id}

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        if cancel_pending:
            with self._state_lock:
                pending = list(self._handles.values())
            for handle in pending:
                self.cancel(handle, "Render engine shutting down")
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def _dispatch(
        self, matrix: MatrixConfiguration, row: Row, expected_status: tuple[RowStatus, ...]
    ) -> RenderJobHandle:
        job_id = str(uuid4())
        # Status is rechecked under the repository lock.
        started = self.store.patch_row(
            matrix.id,
            row.id,
            expected_status=expected_status,
            status="rendering",
            render_job_id=job_id,
            render_started_at=utc_now_iso(),
            render_completed_at=None,
            output_url=None,
            last_error=None,
        )
        handle = RenderJobHandle(self, matrix.id, row.id, job_id)
        request = build_render_request(matrix, started, job_id)

        with self._state_lock:
            self._handles[job_id] = handle
        try:
            handle.future = self._executor.submit(self._run_job, handle, request)
        except RuntimeError as exc:
            self._release(handle)
            self.store.patch_row(matrix.id, row.id, **{name: getattr(row, name) for name in _RENDER_BOOKKEEPING})
            raise RenderDispatchError(f"Render pool is not accepting jobs: {exc}") from exc

        logger.info("Dispatched render job %s for row %s of matrix %s", job_id, row.id, matrix.id)
        return handle

    def _run_job(self, handle: RenderJobHandle, request: RenderRequest) -> RowRenderOutcome:
        with self._state_lock:
            self._active += 1

        timer: threading.Timer | None = None
        if self.render_timeout_seconds is not None:
            timer = threading.Timer(self.render_timeout_seconds, self._expire, args=(handle,))
            timer.daemon = True
            timer.start()

        token = handle.cancel_token
        try:
            if token.cancelled:
                return self._settle(handle, "failed", last_error=token.reason)
            result = self.provider.render(request, token)
        except Exception as exc:
            if token.cancelled:
                return self._settle(handle, "failed", last_error=token.reason)
            logger.warning("Render failed for row %s of matrix %s: %s", handle.row_id, handle.matrix_id, exc)
            return self._settle(handle, "failed", last_error=str(exc) or exc.__class__.__name__)
        else:
            if token.cancelled:
                logger.info("Discarding late render result for row %s: %s", handle.row_id, token.reason)
                return self._settle(handle, "failed", last_error=token.reason)
            return self._settle(handle, "rendered", output_url=result.output_url, last_error=None)
        finally:
            if timer is not None:
                timer.cancel()
            with self._state_lock:
                self._active -= 1
            self._release(handle)

    def _expire(self, handle: RenderJobHandle) -> None:
        if handle.done:
            return
        reason = f"Render timed out after {self.render_timeout_seconds:g}s"
        handle.cancel_token.cancel(reason)
        logger.warning("Render job %s for row %s of matrix %s timed out", handle.job_id, handle.row_id, handle.matrix_id)
        self._settle(handle, "failed", last_error=reason)

    def _release(self, handle: RenderJobHandle) -> None:
        with self._state_lock:
            self._handles.pop(handle.job_id, None)

    def _settle(self, handle: RenderJobHandle, status: RowStatus, **fields: Any) -> RowRenderOutcome:
        with handle._settle_lock:
            if handle._outcome is not None:
                return handle._outcome

            try:
                row = self.store.patch_row(
                    handle.matrix_id,
                    handle.row_id,
                    status=status,
                    render_completed_at=utc_now_iso(),
                    **fields,
                )
                outcome = RowRenderOutcome(
                    row_id=row.id,
                    status=row.status,
                    dispatched=True,
                    render_job_id=row.render_job_id,
                    output_url=row.output_url,
                    error=row.last_error,
                )
            except NotFoundError:
                logger.warning(
                    "Row %s left matrix %s before render job %s settled", handle.row_id, handle.matrix_id, handle.job_id
                )
                outcome = RowRenderOutcome(
                    row_id=handle.row_id,
                    status="failed",
                    dispatched=True,
                    render_job_id=handle.job_id,
                    error="Row was removed before the render completed",
                )
            except MatrixEngineError as exc:
                logger.error("Could not save render result for row %s of matrix %s: %s", handle.row_id, handle.matrix_id, exc)
                outcome = RowRenderOutcome(
                    row_id=handle.row_id,
                    status=status,
                    dispatched=True,
                    render_job_id=handle.job_id,
                    output_url=fields.get("output_url"),
                    error=f"Render result could not be saved: {exc}",
                )

            handle._outcome = outcome
            handle._settled.set()
        return outcome
