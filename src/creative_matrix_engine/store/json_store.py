"""Local JSON-document matrix repository with optional S3 mirror.

One file per matrix at ``{storage_root}/matrices/{matrix_id}.json``. Reads and
writes share one lock, so row patches from concurrent render tasks and whole
matrix rewrites are serialized here. When an :class:`S3Mirror` is supplied every
write is also uploaded, single reads fall back to S3 when the local file is
missing, and campaign listings first pull down documents that only exist in S3.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Collection
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from creative_matrix_engine.exceptions import MatrixNotFoundError, RowNotFoundError, StoreError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row
from creative_matrix_engine.output.writer import read_json, write_json

from .base import MatrixRepository, MatrixTransform, apply_matrix_fields, apply_row_fields, with_row_replaced
from .s3_mirror import S3Mirror

logger = logging.getLogger(__name__)


class JsonFileMatrixRepository(MatrixRepository):
    def __init__(self, storage_root: Path, s3_mirror: S3Mirror | None = None):
        self.storage_root = storage_root
        self.matrices_root = storage_root / "matrices"
        self.matrices_root.mkdir(parents=True, exist_ok=True)
        self._s3 = s3_mirror
        self._lock = threading.RLock()

    def _path(self, matrix_id: str) -> Path:
        return self.matrices_root / f"{matrix_id}.json"

    def _read(self, path: Path) -> MatrixConfiguration:
        try:
            return MatrixConfiguration.model_validate(read_json(path))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise StoreError(f"Unable to read matrix document {path}: {exc}") from exc

    def _write(self, matrix: MatrixConfiguration) -> MatrixConfiguration:
        path = self._path(matrix.id)
        try:
            write_json(matrix.to_dict(), path)
        except OSError as exc:
            raise StoreError(f"Unable to write matrix document {path}: {exc}") from exc
        if self._s3 is not None:
            self._s3.upload_matrix(path, matrix.id)
        return matrix

    def _load(self, matrix_id: str) -> MatrixConfiguration | None:
        path = self._path(matrix_id)
        if path.exists():
            return self._read(path)

        # Local cache miss, try S3
        if self._s3 is not None and self._s3.download_matrix(matrix_id, path):
            return self._read(path)
        return None

    def _current(self, matrix_id: str) -> MatrixConfiguration:
        current = self._load(matrix_id)
        if current is None:
            raise MatrixNotFoundError(matrix_id)
        return current

    def _pull_remote_documents(self) -> None:
        if self._s3 is None:
            return
        for matrix_id in self._s3.list_matrix_ids():
            path = self._path(matrix_id)
            if not path.exists() and self._s3.download_matrix(matrix_id, path):
                logger.info("Pulled matrix %s from S3", matrix_id)

    def get(self, matrix_id: str) -> MatrixConfiguration | None:
        with self._lock:
            return self._load(matrix_id)

    def insert(self, matrix: MatrixConfiguration) -> MatrixConfiguration:
        with self._lock:
            if self._path(matrix.id).exists():
                raise StoreError(f"Matrix already exists: {matrix.id}")
            logger.debug("Inserting matrix %s", matrix.id)
            return self._write(matrix)

    def update(self, matrix_id: str, fields: dict[str, Any]) -> MatrixConfiguration:
        return self.update_with(matrix_id, lambda _: fields)

    def update_with(self, matrix_id: str, transform: MatrixTransform) -> MatrixConfiguration:
        with self._lock:
            current = self._current(matrix_id)
            return self._write(apply_matrix_fields(current, transform(current)))

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
            self._write(with_row_replaced(current, index, updated_row, updated_at))
            return updated_row

    def list_by_campaign(self, campaign_id: str) -> list[MatrixConfiguration]:
        with self._lock:
            self._pull_remote_documents()
            matrices = []
            for path in sorted(self.matrices_root.glob("*.json")):
                matrix = self._read(path)
                if matrix.campaign_id == campaign_id:
                    matrices.append(matrix)
            return matrices
