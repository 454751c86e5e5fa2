from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from creative_matrix_engine.models.matrix import MatrixConfiguration, Row


@dataclass(slots=True, frozen=True)
class SlotContent:
    slot_id: str
    slot_name: str
    slot_type: str
    candidate_id: str


@dataclass(slots=True, frozen=True)
class RenderRequest:
    """Everything the external renderer gets for one row."""

    matrix_id: str
    campaign_id: str
    row_id: str
    job_id: str
    values: dict[str, str]
    contents: list[SlotContent] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class RenderResult:
    output_url: str
    external_job_id: str | None = None


class CancellationToken:
    """Set once by the orchestrator when a job times out or is cancelled."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Render cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; returns ``True`` early if cancelled."""
        return self._event.wait(seconds)


def build_render_request(matrix: MatrixConfiguration, row: Row, job_id: str) -> RenderRequest:
    contents = [
        SlotContent(
            slot_id=slot.id,
            slot_name=slot.name,
            slot_type=slot.type,
            candidate_id=row.values[slot.id],
        )
        for slot in matrix.slots
        if slot.id in row.values
    ]
    return RenderRequest(
        matrix_id=matrix.id,
        campaign_id=matrix.campaign_id,
        row_id=row.id,
        job_id=job_id,
        values=dict(row.values),
        contents=contents,
    )


class RenderProvider(ABC):
    @abstractmethod
    def render(self, request: RenderRequest, cancel_token: CancellationToken) -> RenderResult:
        """Turn one row into a finished creative.

        Implementations raise :class:`~creative_matrix_engine.exceptions.RenderDispatchError`
        (or any exception) on failure and should return early once *cancel_token* is set.
        """
        raise NotImplementedError
