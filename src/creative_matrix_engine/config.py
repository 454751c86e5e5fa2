from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema import validate
from pydantic import BaseModel, Field, ValidationError

from creative_matrix_engine.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    max_concurrent_renders: int = Field(default=5, ge=1)
    render_timeout_seconds: float | None = Field(default=300.0, gt=0)
    render_locked_rows: bool = True
    default_max_rows: int = Field(default=100, ge=1)
    storage_root: Path = Path("./storage")
    output_root: Path = Path("./output")
    render_provider: Literal["mock", "image"] = "mock"
    image_backend: Literal["mock", "developer", "vertex"] = "mock"
    gemini_model: str = "gemini-2.5-flash-image"


def _load_json_or_yaml(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")

    if suffix in {".yaml", ".yml"}:
        parsed = yaml.safe_load(content)
    elif suffix == ".json":
        parsed = json.loads(content)
    else:
        raise ConfigurationError(f"Unsupported engine config format: {path}")

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigurationError("Engine config must be a top-level object/map")
    return parsed


def _default_schema_path() -> Path:
    return Path(__file__).resolve().parents[2] / "schemas" / "engine_config.schema.json"


def default_config_path() -> Path:
    return Path(__file__).resolve().parents[2] / "config" / "engine.yaml"


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    merged = dict(data)
    max_renders = os.getenv("MATRIX_MAX_CONCURRENT_RENDERS")
    if max_renders:
        merged["max_concurrent_renders"] = max_renders
    timeout = os.getenv("MATRIX_RENDER_TIMEOUT_SECONDS")
    if timeout:
        merged["render_timeout_seconds"] = timeout
    return merged


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine settings from YAML/JSON; a missing default file yields defaults."""
    path = config_path or default_config_path()
    if config_path is not None and not path.exists():
        raise ConfigurationError(f"Engine config file not found: {path}")

    data: dict[str, Any] = {}
    if path.exists():
        try:
            data = _load_json_or_yaml(path)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Unable to parse engine config {path}: {exc}") from exc

        schema_path = _default_schema_path()
        if schema_path.exists():
            schema = json.loads(schema_path.read_text(encoding="utf-8"))
            try:
                validate(instance=data, schema=schema)
            except JsonSchemaValidationError as exc:
                raise ConfigurationError(f"Engine config schema validation failed: {exc.message}") from exc
        logger.debug("Loaded engine config from %s", path)

    try:
        return EngineConfig.model_validate(_apply_env_overrides(data))
    except ValidationError as exc:
        errors = [f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in exc.errors()]
        raise ConfigurationError("Invalid engine config: " + "; ".join(errors)) from exc
