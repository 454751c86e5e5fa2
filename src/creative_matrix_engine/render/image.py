from __future__ import annotations

import logging
from pathlib import Path

from creative_matrix_engine.exceptions import RenderDispatchError
from creative_matrix_engine.output.writer import save_image
from creative_matrix_engine.store.s3_mirror import S3Mirror

from .base import CancellationToken, RenderProvider, RenderRequest, RenderResult
from .frames import FrameGenerator
from .prompt import build_render_prompt

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = (1080, 1080)


class ImageRenderProvider(RenderProvider):
    """Renders a row as a still frame and writes it under ``{output_root}/{matrix_id}/``."""

    def __init__(
        self,
        frame_generator: FrameGenerator,
        output_root: Path,
        s3_mirror: S3Mirror | None = None,
        size: tuple[int, int] = DEFAULT_FRAME_SIZE,
    ) -> None:
        self.frame_generator = frame_generator
        self.output_root = output_root
        self.size = size
        self._s3 = s3_mirror

    def render(self, request: RenderRequest, cancel_token: CancellationToken) -> RenderResult:
        prompt = build_render_prompt(request)
        labels = [f"{content.slot_name}: {content.candidate_id}" for content in request.contents]
        frame = self.frame_generator.generate_frame(prompt, self.size, labels=labels)

        if cancel_token.cancelled:
            raise RenderDispatchError(cancel_token.reason or "Render cancelled")

        output_path = self.output_root / request.matrix_id / f"{request.row_id}.png"
        try:
            save_image(frame, output_path)
        except OSError as exc:
            raise RenderDispatchError(f"Unable to write rendered frame {output_path}: {exc}") from exc
        if self._s3 is not None:
            self._s3.upload_output_file(output_path, self.output_root)

        logger.debug("Rendered row %s to %s", request.row_id, output_path)
        return RenderResult(output_url=output_path.resolve().as_uri())
