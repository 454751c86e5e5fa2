from __future__ import annotations

from dataclasses import dataclass

from creative_matrix_engine.config import EngineConfig
from creative_matrix_engine.render.base import RenderProvider
from creative_matrix_engine.render.factory import create_render_provider
from creative_matrix_engine.render.orchestrator import RenderOrchestrator
from creative_matrix_engine.store import JsonFileMatrixRepository, MatrixRepository, MatrixStore, S3Mirror


@dataclass(slots=True)
class EngineRuntime:
    config: EngineConfig
    store: MatrixStore
    orchestrator: RenderOrchestrator

    def close(self) -> None:
        self.orchestrator.shutdown(wait=True)


def build_runtime(
    config: EngineConfig,
    repository: MatrixRepository | None = None,
    provider: RenderProvider | None = None,
) -> EngineRuntime:
    s3_mirror = S3Mirror.from_env()
    store = MatrixStore(repository or JsonFileMatrixRepository(config.storage_root, s3_mirror=s3_mirror))
    orchestrator = RenderOrchestrator(
        store=store,
        provider=provider or create_render_provider(config, s3_mirror=s3_mirror),
        max_concurrent_renders=config.max_concurrent_renders,
        render_timeout_seconds=config.render_timeout_seconds,
        render_locked_rows=config.render_locked_rows,
    )
    return EngineRuntime(config=config, store=store, orchestrator=orchestrator)
