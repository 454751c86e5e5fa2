from .base import CancellationToken, RenderProvider, RenderRequest, RenderResult, SlotContent, build_render_request
from .factory import create_frame_generator, create_render_provider
from .mock import MockRenderProvider
from .orchestrator import BatchRenderResult, RenderJobHandle, RenderOrchestrator, RowRenderOutcome
from .progress import BatchProgress, compute_batch_progress

__all__ = [
    "BatchProgress",
    "BatchRenderResult",
    "CancellationToken",
    "MockRenderProvider",
    "RenderJobHandle",
    "RenderOrchestrator",
    "RenderProvider",
    "RenderRequest",
    "RenderResult",
    "RowRenderOutcome",
    "SlotContent",
    "build_render_request",
    "compute_batch_progress",
    "create_frame_generator",
    "create_render_provider",
]
