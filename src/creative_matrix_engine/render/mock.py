from __future__ import annotations

import hashlib
import threading

from creative_matrix_engine.exceptions import RenderDispatchError

from .base import CancellationToken, RenderProvider, RenderRequest, RenderResult


class MockRenderProvider(RenderProvider):
    """Deterministic renderer for dry runs and tests.

    Output URLs are derived from the row content, so the same slot values always
    map to the same URL. Rows listed in *fail_rows*, or containing a candidate
    listed in *fail_candidates*, raise :class:`RenderDispatchError`.
    """

    def __init__(
        self,
        fail_rows: set[str] | None = None,
        fail_candidates: set[str] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.fail_rows = set(fail_rows or ())
        self.fail_candidates = set(fail_candidates or ())
        self.delay_seconds = delay_seconds
        self.rendered_rows: list[str] = []
        self.peak_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    def render(self, request: RenderRequest, cancel_token: CancellationToken) -> RenderResult:
        with self._lock:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            if self.delay_seconds and cancel_token.wait(self.delay_seconds):
                raise RenderDispatchError(cancel_token.reason or "Render cancelled")

            if request.row_id in self.fail_rows:
                raise RenderDispatchError(f"Mock renderer rejected row {request.row_id}")
            bad = sorted(set(request.values.values()) & self.fail_candidates)
            if bad:
                raise RenderDispatchError(f"Mock renderer cannot resolve candidates: {', '.join(bad)}")

            content_key = "|".join(f"{slot_id}={request.values[slot_id]}" for slot_id in sorted(request.values))
            digest = hashlib.sha256(content_key.encode("utf-8")).hexdigest()[:16]
            with self._lock:
                self.rendered_rows.append(request.row_id)
            return RenderResult(
                output_url=f"mock://renders/{request.matrix_id}/{digest}.mp4",
                external_job_id=f"mock-{request.job_id}",
            )
        finally:
            with self._lock:
                self._in_flight -= 1
