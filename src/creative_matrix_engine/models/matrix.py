from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

RowStatus = Literal["draft", "rendering", "rendered", "failed"]

DEFAULT_ROW_PRIORITY = 5


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python, immutable once built."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Slot(_WireModel):
    """One dimension of the matrix.

    ``required`` is stored and returned as given. Generation still fills every
    slot, since each row carries exactly one value per slot.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    candidate_ids: list[str] = Field(default_factory=list)
    required: bool = True
    locked: bool = False
    locked_value: str | None = None

    @model_validator(mode="after")
    def _check_lock(self) -> Slot:
        if self.locked and self.locked_value is None:
            raise ValueError(f"slot {self.id} is locked but has no lockedValue")
        if self.locked and self.locked_value not in self.candidate_ids:
            raise ValueError(f"slot {self.id} lockedValue {self.locked_value!r} is not one of its candidateIds")
        if not self.locked and self.locked_value is not None:
            raise ValueError(f"slot {self.id} has a lockedValue but is not locked")
        return self


class Row(_WireModel):
    id: str = Field(min_length=1)
    values: dict[str, str] = Field(default_factory=dict)
    status: RowStatus = "draft"
    locked: bool = False
    priority: int = DEFAULT_ROW_PRIORITY
    render_job_id: str | None = None
    output_url: str | None = None
    last_error: str | None = None
    created_at: str | None = None
    render_started_at: str | None = None
    render_completed_at: str | None = None

    def conforms_to(self, slot_ids: list[str]) -> bool:
        return set(self.values) == set(slot_ids)


class MatrixConfiguration(_WireModel):
    id: str = Field(min_length=1)
    campaign_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    slots: list[Slot] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @model_validator(mode="after")
    def _check_unique_ids(self) -> MatrixConfiguration:
        slot_ids = [slot.id for slot in self.slots]
        if len(slot_ids) != len(set(slot_ids)):
            raise ValueError("slot ids must be unique within a matrix")
        row_ids = [row.id for row in self.rows]
        if len(row_ids) != len(set(row_ids)):
            raise ValueError("row ids must be unique within a matrix")
        return self

    @property
    def slot_ids(self) -> list[str]:
        return [slot.id for slot in self.slots]

    def find_slot(self, slot_id: str) -> tuple[int, Slot] | None:
        for index, slot in enumerate(self.slots):
            if slot.id == slot_id:
                return index, slot
        return None

    def find_row(self, row_id: str) -> tuple[int, Row] | None:
        for index, row in enumerate(self.rows):
            if row.id == row_id:
                return index, row
        return None


class GenerationOptions(_WireModel):
    max_rows: int | None = Field(default=None, ge=0)
    allow_duplicates: bool = False
    vary_slots: list[str] = Field(default_factory=list)
    auto_render: bool = False
    render_priority: int | None = None


class MatrixCreate(_WireModel):
    """Payload accepted by ``create_matrix``."""

    id: str | None = None
    campaign_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    slots: list[Slot] = Field(min_length=1)
    rows: list[Row] = Field(default_factory=list)


class MatrixUpdate(_WireModel):
    """Partial update; ``id`` and ``campaignId`` are immutable and ignored if sent."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    slots: list[Slot] | None = None
    rows: list[Row] | None = None
