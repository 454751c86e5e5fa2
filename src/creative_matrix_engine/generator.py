"""Combination Generator: turns slot domains and lock state into a row set.

Pure and synchronous. The caller persists the returned matrix; nothing here
touches storage, so a rejected generation leaves the stored matrix unchanged.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterator
from uuid import uuid4

from creative_matrix_engine.exceptions import MatrixValidationError
from creative_matrix_engine.models.matrix import (
    DEFAULT_ROW_PRIORITY,
    GenerationOptions,
    MatrixConfiguration,
    Row,
    Slot,
)
from creative_matrix_engine.output.metrics import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 100


def _new_row_id() -> str:
    return str(uuid4())


def _unique_in_order(values: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


def effective_domain(slot: Slot, vary: bool, allow_duplicates: bool) -> list[str]:
    """Candidates the generator may place in *slot*.

    A locked slot contributes only its locked value. A slot that is unlocked but
    excluded from ``varySlots`` is pinned to its first candidate.
    """
    if slot.locked and slot.locked_value is not None:
        return [slot.locked_value]
    candidates = slot.candidate_ids if allow_duplicates else _unique_in_order(slot.candidate_ids)
    if not vary:
        return candidates[:1]
    return candidates


def effective_domains(matrix: MatrixConfiguration, options: GenerationOptions) -> list[list[str]]:
    if not matrix.slots:
        raise MatrixValidationError(f"Matrix {matrix.id} has no slots to combine")

    unknown = [slot_id for slot_id in options.vary_slots if matrix.find_slot(slot_id) is None]
    if unknown:
        raise MatrixValidationError(
            "varySlots references unknown slots: " + ", ".join(unknown),
            errors=[f"- varySlots: unknown slot {slot_id}" for slot_id in unknown],
        )

    vary_filter = set(options.vary_slots)
    domains: list[list[str]] = []
    errors: list[str] = []
    for slot in matrix.slots:
        vary = not vary_filter or slot.id in vary_filter
        domain = effective_domain(slot, vary, options.allow_duplicates)
        if not domain:
            errors.append(f"- slots.{slot.id}: no candidates to choose from")
        domains.append(domain)

    if errors:
        raise MatrixValidationError("Cannot generate combinations, empty slot domain:\n" + "\n".join(errors), errors=errors)
    return domains


def count_combinations(matrix: MatrixConfiguration, options: GenerationOptions) -> int:
    """Size of the full cartesian product before deduplication and capping."""
    total = 1
    for domain in effective_domains(matrix, options):
        total *= len(domain)
    return total


def _iter_combinations(
    domains: list[list[str]],
    excluded: set[tuple[str, ...]],
    allow_duplicates: bool,
) -> Iterator[tuple[str, ...]]:
    seen: set[tuple[str, ...]] = set()
    # itertools.product varies the last slot fastest, so truncation is stable by slot order.
    for combination in itertools.product(*domains):
        if combination in excluded:
            continue
        if not allow_duplicates:
            if combination in seen:
                continue
            seen.add(combination)
        yield combination


def generate_combinations(
    matrix: MatrixConfiguration,
    options: GenerationOptions,
    default_max_rows: int = DEFAULT_MAX_ROWS,
    row_id_factory: Callable[[], str] = _new_row_id,
) -> MatrixConfiguration:
    """Return a copy of *matrix* whose rows are the locked rows plus a fresh product.

    Locked rows are kept verbatim, in their existing order, ahead of the new rows
    and count against ``max_rows``. Unlocked rows are discarded. Raises
    :class:`MatrixValidationError` before producing anything when a slot domain
    is empty or ``max_rows`` is smaller than the number of locked rows.
    """
    max_rows = options.max_rows if options.max_rows is not None else default_max_rows
    slot_ids = matrix.slot_ids

    locked_rows: list[Row] = []
    for row in matrix.rows:
        if not row.locked:
            continue
        if not row.conforms_to(slot_ids):
            logger.warning("Dropping locked row %s of matrix %s: it no longer matches the slot set", row.id, matrix.id)
            continue
        locked_rows.append(row)

    if max_rows < len(locked_rows):
        raise MatrixValidationError(
            f"maxRows ({max_rows}) is smaller than the number of locked rows ({len(locked_rows)})"
        )

    domains = effective_domains(matrix, options)

    excluded: set[tuple[str, ...]] = set()
    if not options.allow_duplicates:
        excluded = {tuple(row.values[slot_id] for slot_id in slot_ids) for row in locked_rows}

    capacity = max_rows - len(locked_rows)
    combinations = itertools.islice(
        _iter_combinations(domains, excluded, options.allow_duplicates),
        capacity,
    )

    created_at = utc_now_iso()
    priority = options.render_priority if options.render_priority is not None else DEFAULT_ROW_PRIORITY
    new_rows = [
        Row(
            id=row_id_factory(),
            values=dict(zip(slot_ids, combination)),
            status="draft",
            priority=priority,
            created_at=created_at,
        )
        for combination in combinations
    ]

    logger.info(
        "Generated %d rows for matrix %s (%d locked rows kept, cap %d)",
        len(new_rows),
        matrix.id,
        len(locked_rows),
        max_rows,
    )
    return matrix.model_copy(update={"rows": [*locked_rows, *new_rows]})
