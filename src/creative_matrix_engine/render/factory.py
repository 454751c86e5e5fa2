from __future__ import annotations

from creative_matrix_engine.config import EngineConfig
from creative_matrix_engine.store.s3_mirror import S3Mirror

from .base import RenderProvider
from .frames import FrameGenerator, MockFrameGenerator
from .gemini import GeminiDeveloperFrameGenerator, GeminiVertexFrameGenerator
from .image import ImageRenderProvider
from .mock import MockRenderProvider


def create_frame_generator(backend: str, gemini_model: str) -> FrameGenerator:
    if backend == "mock":
        return MockFrameGenerator()
    if backend == "developer":
        return GeminiDeveloperFrameGenerator(model=gemini_model)
    if backend == "vertex":
        return GeminiVertexFrameGenerator(model=gemini_model)

    raise ValueError(f"Unknown image backend: {backend}")


def create_render_provider(config: EngineConfig, s3_mirror: S3Mirror | None = None) -> RenderProvider:
    if config.render_provider == "mock":
        return MockRenderProvider()
    if config.render_provider != "image":
        raise ValueError(f"Unknown render provider: {config.render_provider}")

    return ImageRenderProvider(
        frame_generator=create_frame_generator(config.image_backend, config.gemini_model),
        output_root=config.output_root,
        s3_mirror=s3_mirror,
    )
