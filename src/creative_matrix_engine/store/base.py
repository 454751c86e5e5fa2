from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Collection
from typing import Any

from creative_matrix_engine.exceptions import RowStatusConflictError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row

MatrixTransform = Callable[[MatrixConfiguration], dict[str, Any]]


def apply_matrix_fields(matrix: MatrixConfiguration, fields: dict[str, Any]) -> MatrixConfiguration:
    """Return a re-validated copy of *matrix* with *fields* replaced."""
    return MatrixConfiguration.model_validate({**dict(matrix), **fields})


def apply_row_fields(
    matrix_id: str, row: Row, fields: dict[str, Any], expected_status: Collection[str] | None = None
) -> Row:
    if expected_status is not None and row.status not in expected_status:
        raise RowStatusConflictError(matrix_id, row.id, row.status, tuple(expected_status))
    return Row.model_validate({**dict(row), **fields})


def with_row_replaced(
    matrix: MatrixConfiguration, index: int, row: Row, updated_at: str | None = None
) -> MatrixConfiguration:
    rows = list(matrix.rows)
    rows[index] = row
    update: dict[str, Any] = {"rows": rows}
    if updated_at is not None:
        update["updated_at"] = updated_at
    return matrix.model_copy(update=update)


class MatrixRepository(ABC):
    """Persistence collaborator for matrix configurations.

    Implementations hold one lock per repository. ``update_row`` and
    ``update_with`` read and write under that lock, so a render task patching its
    row and a regeneration replacing the row list never overwrite each other.
    """

    @abstractmethod
    def get(self, matrix_id: str) -> MatrixConfiguration | None:
        raise NotImplementedError

    @abstractmethod
    def insert(self, matrix: MatrixConfiguration) -> MatrixConfiguration:
        raise NotImplementedError

    @abstractmethod
    def update(self, matrix_id: str, fields: dict[str, Any]) -> MatrixConfiguration:
        raise NotImplementedError

    @abstractmethod
    def update_with(self, matrix_id: str, transform: MatrixTransform) -> MatrixConfiguration:
        """Apply the fields returned by ``transform(current)`` to the stored matrix.

        *transform* runs under the repository lock and may raise to abort the write.
        """
        raise NotImplementedError

    @abstractmethod
    def update_row(
        self,
        matrix_id: str,
        row_id: str,
        fields: dict[str, Any],
        updated_at: str | None = None,
        expected_status: Collection[str] | None = None,
    ) -> Row:
        """Patch one row. With *expected_status* the patch is refused unless the
        row's current status is one of those values."""
        raise NotImplementedError

    @abstractmethod
    def list_by_campaign(self, campaign_id: str) -> list[MatrixConfiguration]:
        raise NotImplementedError
