from __future__ import annotations

import threading
from collections.abc import Collection
from typing import Any

from creative_matrix_engine.exceptions import MatrixNotFoundError, RowNotFoundError, StoreError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row

from .base import MatrixRepository, MatrixTransform, apply_matrix_fields, apply_row_fields, with_row_replaced


class InMemoryMatrixRepository(MatrixRepository):
    def __init__(self) -> None:
        self._matrices: dict[str, MatrixConfiguration] = {}
        self._lock = threading.RLock()

    def _current(self, matrix_id: str) -> MatrixConfiguration:
        current = self._matrices.get(matrix_id)
        if current is None:
            raise MatrixNotFoundError(matrix_id)
        return current

    def get(self, matrix_id: str) -> MatrixConfiguration | None:
        with self._lock:
            return self._matrices.get(matrix_id)

    def insert(self, matrix: MatrixConfiguration) -> MatrixConfiguration:
        with self._lock:
            if matrix.id in self._matrices:
                raise StoreError(f"Matrix already exists: {matrix.id}")
            self._matrices[matrix.id] = matrix
            return matrix

    def update(self, matrix_id: str, fields: dict[str, Any]) -> MatrixConfiguration:
        return self.update_with(matrix_id, lambda _: fields)

    def update_with(self, matrix_id: str, transform: MatrixTransform) -> MatrixConfiguration:
        with self._lock:
            current = self._current(matrix_id)
            updated = apply_matrix_fields(current, transform(current))
            self._matrices[matrix_id] = updated
            return updated

    def update_row(
        self,
        matrix_id: str,
        row_id: str,
        fields: dict[str, Any],
        updated_at: str | None = None,
        expected_status: Collection[str] | None = None,
    ) -> Row:
        with self._lock:
            current = self._current(matrix_id)
            found = current.find_row(row_id)
            if found is None:
                raise RowNotFoundError(matrix_id, row_id)
            index, row = found
            updated_row = apply_row_fields(matrix_id, row, fields, expected_status)
            self._matrices[matrix_id] = with_row_replaced(current, index, updated_row, updated_at)
            return updated_row

    def list_by_campaign(self, campaign_id: str) -> list[MatrixConfiguration]:
        with self._lock:
            return [matrix for matrix in self._matrices.values() if matrix.campaign_id == campaign_id]
