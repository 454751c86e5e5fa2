"""Lock Manager: structural lock toggles on slots and rows.

These functions only build the updated matrix; persisting it is the caller's
job and no regeneration is triggered.
"""

from __future__ import annotations

from creative_matrix_engine.exceptions import MatrixValidationError, RowNotFoundError, SlotNotFoundError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row, Slot


def lock_slot_copy(slot: Slot, locked: bool, locked_value: str | None = None) -> Slot:
    if not locked:
        return Slot.model_validate({**dict(slot), "locked": False, "locked_value": None})

    value = locked_value
    if value is None:
        if not slot.candidate_ids:
            raise MatrixValidationError(f"Slot {slot.id} has no candidates to lock to")
        value = slot.candidate_ids[0]
    if value not in slot.candidate_ids:
        raise MatrixValidationError(
            f"Cannot lock slot {slot.id} to {value!r}: value is not one of its candidateIds",
            errors=[f"- lockedValue: {value!r} not in {slot.candidate_ids}"],
        )
    return Slot.model_validate({**dict(slot), "locked": True, "locked_value": value})


def set_slot_lock(
    matrix: MatrixConfiguration,
    slot_id: str,
    locked: bool,
    locked_value: str | None = None,
) -> MatrixConfiguration:
    """Pin or release a slot.

    Locking without an explicit value pins the slot's first candidate.
    """
    found = matrix.find_slot(slot_id)
    if found is None:
        raise SlotNotFoundError(matrix.id, slot_id)
    index, slot = found

    slots = list(matrix.slots)
    slots[index] = lock_slot_copy(slot, locked, locked_value)
    return matrix.model_copy(update={"slots": slots})


def set_row_lock(matrix: MatrixConfiguration, row_id: str, locked: bool) -> MatrixConfiguration:
    found = matrix.find_row(row_id)
    if found is None:
        raise RowNotFoundError(matrix.id, row_id)
    index, row = found

    rows = list(matrix.rows)
    rows[index] = Row.model_validate({**dict(row), "locked": locked})
    return matrix.model_copy(update={"rows": rows})
