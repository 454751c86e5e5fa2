from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any

from creative_matrix_engine.exceptions import MatrixNotFoundError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row
from creative_matrix_engine.output.metrics import utc_now_iso

from .base import MatrixRepository, MatrixTransform

logger = logging.getLogger(__name__)


class MatrixStore:
    """Reads and writes matrix configurations through a :class:`MatrixRepository`.

    Every write stamps ``updated_at``. Changes derived from the stored matrix go
    through :meth:`transform` so they are computed from the state read under the
    repository lock; single-row patches go through :meth:`patch_row`.
    """

    def __init__(self, repository: MatrixRepository) -> None:
        self.repository = repository

    def get(self, matrix_id: str) -> MatrixConfiguration:
        matrix = self.repository.get(matrix_id)
        if matrix is None:
            raise MatrixNotFoundError(matrix_id)
        return matrix

    def list_by_campaign(self, campaign_id: str) -> list[MatrixConfiguration]:
        matrices = self.repository.list_by_campaign(campaign_id)
        return sorted(matrices, key=lambda matrix: matrix.created_at or "", reverse=True)

    def insert(self, matrix: MatrixConfiguration) -> MatrixConfiguration:
        now = utc_now_iso()
        stamped = matrix.model_copy(update={"created_at": matrix.created_at or now, "updated_at": now})
        logger.info("Creating matrix %s for campaign %s", stamped.id, stamped.campaign_id)
        return self.repository.insert(stamped)

    def transform(self, matrix_id: str, transform: MatrixTransform) -> MatrixConfiguration:
        """Atomically replace the fields ``transform(current)`` returns."""
        return self.repository.update_with(
            matrix_id, lambda current: {**transform(current), "updated_at": utc_now_iso()}
        )

    def patch_row(
        self, matrix_id: str, row_id: str, expected_status: Collection[str] | None = None, **fields: Any
    ) -> Row:
        return self.repository.update_row(
            matrix_id, row_id, fields, updated_at=utc_now_iso(), expected_status=expected_status
        )
