from __future__ import annotations

import json
from pathlib import Path

from .matrix import MatrixConfiguration, MatrixCreate


def matrix_json_schema() -> dict:
    return MatrixConfiguration.model_json_schema(by_alias=True)


def matrix_create_json_schema() -> dict:
    return MatrixCreate.model_json_schema(by_alias=True)


def write_matrix_schema(schema_path: Path) -> None:
    schema_path.parent.mkdir(parents=True, exist_ok=True)
    schema_path.write_text(json.dumps(matrix_create_json_schema(), indent=2), encoding="utf-8")
