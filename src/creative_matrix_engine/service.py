"""Matrix Service: the operations exposed to callers.

Stateless functions over an explicit :class:`MatrixStore` (and, for rendering,
a :class:`RenderOrchestrator`). Validation happens before any write, so a
rejected call leaves the stored matrix untouched.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from creative_matrix_engine import generator, locks
from creative_matrix_engine.exceptions import MatrixValidationError
from creative_matrix_engine.matrix_loader import parse_matrix_payload, validation_messages
from creative_matrix_engine.models.matrix import (
    GenerationOptions,
    MatrixConfiguration,
    MatrixCreate,
    MatrixUpdate,
    Row,
    Slot,
)
from creative_matrix_engine.render.orchestrator import BatchRenderResult, RenderJobHandle, RenderOrchestrator
from creative_matrix_engine.render.progress import BatchProgress, compute_batch_progress
from creative_matrix_engine.store.matrix_store import MatrixStore

logger = logging.getLogger(__name__)


def _validated(model_cls, payload: Any, label: str):
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload or {})
    except ValidationError as exc:
        errors = validation_messages(exc)
        raise MatrixValidationError(f"Invalid {label}:\n" + "\n".join(errors), errors=errors) from exc


def _check_rows_conform(slots: list[Slot], rows: list[Row]) -> None:
    slot_ids = [slot.id for slot in slots]
    errors = [
        f"- rows.{row.id}: values must have exactly one entry per slot ({', '.join(slot_ids)})"
        for row in rows
        if not row.conforms_to(slot_ids)
    ]
    if errors:
        raise MatrixValidationError("Rows do not match the matrix slots:\n" + "\n".join(errors), errors=errors)


def _build_matrix(**fields: Any) -> MatrixConfiguration:
    try:
        return MatrixConfiguration(**fields)
    except ValidationError as exc:
        errors = validation_messages(exc)
        raise MatrixValidationError("Matrix validation failed:\n" + "\n".join(errors), errors=errors) from exc


def create_matrix(store: MatrixStore, payload: MatrixCreate | dict, user_id: str | None = None) -> MatrixConfiguration:
    request = payload if isinstance(payload, MatrixCreate) else parse_matrix_payload(payload)
    _check_rows_conform(request.slots, request.rows)

    matrix = _build_matrix(
        id=request.id or str(uuid4()),
        campaign_id=request.campaign_id,
        name=request.name,
        description=request.description,
        slots=request.slots,
        rows=request.rows,
        created_by=user_id,
    )
    return store.insert(matrix)


def get_matrix(store: MatrixStore, matrix_id: str) -> MatrixConfiguration:
    return store.get(matrix_id)


def list_matrices(store: MatrixStore, campaign_id: str) -> list[MatrixConfiguration]:
    """Matrices of a campaign, most recently created first."""
    return store.list_by_campaign(campaign_id)


def update_matrix(store: MatrixStore, matrix_id: str, payload: MatrixUpdate | dict) -> MatrixConfiguration:
    """Partial update of name, description, slots and rows.

    Replacing the slots without sending rows drops every existing row that no
    longer has exactly one value per slot. Rows that are sent must match.
    """
    update = _validated(MatrixUpdate, payload, "matrix update")
    fields = {name: getattr(update, name) for name in update.model_fields_set}
    if not fields:
        return store.get(matrix_id)

    if "name" in fields and fields["name"] is None:
        raise MatrixValidationError("Matrix name cannot be empty")
    if "slots" in fields and not fields["slots"]:
        raise MatrixValidationError("A matrix needs at least one slot")
    if "rows" in fields and fields["rows"] is None:
        fields["rows"] = []

    def _merge(current: MatrixConfiguration) -> dict[str, Any]:
        merged = dict(fields)
        slots = merged.get("slots") or current.slots
        if "rows" in merged:
            _check_rows_conform(slots, merged["rows"])
        elif "slots" in merged:
            slot_ids = [slot.id for slot in slots]
            kept = [row for row in current.rows if row.conforms_to(slot_ids)]
            if len(kept) != len(current.rows):
                logger.warning(
                    "Dropping %d rows of matrix %s that no longer match the slot set",
                    len(current.rows) - len(kept),
                    matrix_id,
                )
                merged["rows"] = kept

        # Validate the merged document before writing.
        _build_matrix(**{**dict(current), **merged})
        return merged

    return store.transform(matrix_id, _merge)


def generate_combinations(
    store: MatrixStore,
    matrix_id: str,
    options: GenerationOptions | dict | None = None,
    default_max_rows: int = generator.DEFAULT_MAX_ROWS,
    orchestrator: RenderOrchestrator | None = None,
) -> MatrixConfiguration:
    generation_options = _validated(GenerationOptions, options, "generation options")
    if generation_options.auto_render and orchestrator is None:
        raise MatrixValidationError("autoRender requested but no renderer is configured")

    def _regenerate(current: MatrixConfiguration) -> dict[str, Any]:
        regenerated = generator.generate_combinations(current, generation_options, default_max_rows=default_max_rows)
        return {"rows": regenerated.rows}

    persisted = store.transform(matrix_id, _regenerate)

    if generation_options.auto_render:
        orchestrator.render_all(matrix_id, wait=False)
        return store.get(matrix_id)
    return persisted


def set_slot_lock(
    store: MatrixStore,
    matrix_id: str,
    slot_id: str,
    locked: bool,
    locked_value: str | None = None,
) -> MatrixConfiguration:
    updated = store.transform(
        matrix_id,
        lambda current: {"slots": locks.set_slot_lock(current, slot_id, locked, locked_value).slots},
    )
    logger.info("Slot %s of matrix %s %s", slot_id, matrix_id, "locked" if locked else "unlocked")
    return updated


def set_row_lock(store: MatrixStore, matrix_id: str, row_id: str, locked: bool) -> MatrixConfiguration:
    matrix = store.get(matrix_id)
    updated = locks.set_row_lock(matrix, row_id, locked)
    _, row = updated.find_row(row_id)
    # Single-row patch so concurrent render tasks on sibling rows are not overwritten.
    store.patch_row(matrix_id, row_id, locked=row.locked)
    logger.info("Row %s of matrix %s %s", row_id, matrix_id, "locked" if locked else "unlocked")
    return store.get(matrix_id)


def render_row(orchestrator: RenderOrchestrator, matrix_id: str, row_id: str) -> RenderJobHandle:
    return orchestrator.render_row(matrix_id, row_id)


def render_all(orchestrator: RenderOrchestrator, matrix_id: str, wait: bool = True) -> BatchRenderResult:
    return orchestrator.render_all(matrix_id, wait=wait)


def get_batch_progress(store: MatrixStore, matrix_id: str, orchestrator: RenderOrchestrator | None = None) -> BatchProgress:
    workers = orchestrator.max_concurrent_renders if orchestrator is not None else 1
    return compute_batch_progress(store.get(matrix_id), max_concurrent_renders=workers)
