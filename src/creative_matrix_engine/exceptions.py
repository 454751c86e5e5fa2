"""
Domain-specific exceptions for the Creative Matrix Engine.

The HTTP layer and the CLI translate these into status codes and exit messages.
All exceptions inherit from ``MatrixEngineError`` so callers can also use a
single broad catch when needed.
"""

from __future__ import annotations


class MatrixEngineError(Exception):
    """Base exception for all engine errors."""


class MatrixValidationError(MatrixEngineError):
    """Raised when input is rejected before any persistence write.

    Attributes
    ----------
    errors:
        Human-readable list of individual field or rule failures.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = errors or []


class NotFoundError(MatrixEngineError):
    """Raised when a matrix, row or slot id is unknown."""


class MatrixNotFoundError(NotFoundError):
    def __init__(self, matrix_id: str) -> None:
        super().__init__(f"Matrix not found: {matrix_id}")
        self.matrix_id = matrix_id


class RowNotFoundError(NotFoundError):
    def __init__(self, matrix_id: str, row_id: str) -> None:
        super().__init__(f"Row not found: {row_id} (matrix {matrix_id})")
        self.matrix_id = matrix_id
        self.row_id = row_id


class SlotNotFoundError(NotFoundError):
    def __init__(self, matrix_id: str, slot_id: str) -> None:
        super().__init__(f"Slot not found: {slot_id} (matrix {matrix_id})")
        self.matrix_id = matrix_id
        self.slot_id = slot_id


class RenderDispatchError(MatrixEngineError):
    """Raised by a render backend when a row cannot be turned into a creative."""


class ConfigurationError(MatrixEngineError):
    """Raised when required configuration (config files, env vars) is missing or invalid."""


class StoreError(MatrixEngineError):
    """Raised when the persistence collaborator fails to read or write a matrix."""


class RowStatusConflictError(MatrixValidationError):
    """Raised when a row patch expected a status the row no longer has."""

    def __init__(self, matrix_id: str, row_id: str, status: str, expected: tuple[str, ...]) -> None:
        super().__init__(
            f"Row {row_id} of matrix {matrix_id} is {status}, expected one of: {', '.join(expected)}"
        )
        self.matrix_id = matrix_id
        self.row_id = row_id
        self.status = status
