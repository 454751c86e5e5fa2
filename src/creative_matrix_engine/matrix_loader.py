from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .exceptions import MatrixValidationError
from .models.matrix import MatrixCreate

MIN_VALID_EXAMPLE_YAML = """campaignId: summer_launch
name: "Summer launch matrix"
slots:
  - id: visual
    name: "Hero visual"
    type: visual
    candidateIds: [asset_a, asset_b]
  - id: copy
    name: "Headline"
    type: copy
    candidateIds: [copy_x, copy_y]
"""


def _parse_matrix_file(matrix_path: Path) -> dict[str, Any]:
    suffix = matrix_path.suffix.lower()
    content = matrix_path.read_text(encoding="utf-8")

    if suffix in {".yaml", ".yml"}:
        parsed = yaml.safe_load(content)
    elif suffix == ".json":
        parsed = json.loads(content)
    else:
        raise MatrixValidationError(
            "Unsupported matrix format. Use .yaml, .yml, or .json files.\n\n"
            f"Minimal valid YAML example:\n{MIN_VALID_EXAMPLE_YAML}"
        )

    if not isinstance(parsed, dict):
        raise MatrixValidationError(
            "Matrix root must be an object/map.\n\n"
            f"Minimal valid YAML example:\n{MIN_VALID_EXAMPLE_YAML}"
        )
    return parsed


def validation_messages(exc: ValidationError) -> list[str]:
    errors = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item["loc"])
        errors.append(f"- {location}: {item['msg']}" if location else f"- {item['msg']}")
    return errors


def parse_matrix_payload(payload: dict[str, Any]) -> MatrixCreate:
    try:
        return MatrixCreate.model_validate(payload)
    except ValidationError as exc:
        errors = validation_messages(exc)
        raise MatrixValidationError("Matrix validation failed:\n" + "\n".join(errors), errors=errors) from exc


def load_matrix_definition(matrix_path: Path) -> MatrixCreate:
    if not matrix_path.exists():
        raise MatrixValidationError(f"Matrix file not found: {matrix_path}")

    try:
        parsed = _parse_matrix_file(matrix_path)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise MatrixValidationError(
            f"Unable to parse matrix file: {exc}\n\n"
            f"Minimal valid YAML example:\n{MIN_VALID_EXAMPLE_YAML}"
        ) from exc

    try:
        return parse_matrix_payload(parsed)
    except MatrixValidationError as exc:
        raise MatrixValidationError(
            f"{exc}\n\nMinimal valid YAML example:\n{MIN_VALID_EXAMPLE_YAML}",
            errors=exc.errors,
        ) from exc
