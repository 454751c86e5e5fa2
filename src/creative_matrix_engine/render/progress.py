from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from creative_matrix_engine.models.matrix import MatrixConfiguration
from creative_matrix_engine.output.metrics import parse_iso


@dataclass(slots=True)
class BatchProgress:
    matrix_id: str
    total: int
    draft: int
    rendering: int
    rendered: int
    failed: int
    overall_progress: float
    estimated_time_remaining: float | None = None

    def to_dict(self) -> dict:
        return {
            "matrixId": self.matrix_id,
            "total": self.total,
            "draft": self.draft,
            "inProgress": self.rendering,
            "completed": self.rendered,
            "failed": self.failed,
            "overallProgress": self.overall_progress,
            "estimatedTimeRemaining": self.estimated_time_remaining,
        }


def _mean_render_seconds(matrix: MatrixConfiguration) -> float | None:
    durations = []
    for row in matrix.rows:
        if row.status != "rendered" or not row.render_started_at or not row.render_completed_at:
            continue
        elapsed = (parse_iso(row.render_completed_at) - parse_iso(row.render_started_at)).total_seconds()
        durations.append(max(0.0, elapsed))
    if not durations:
        return None
    return sum(durations) / len(durations)


def compute_batch_progress(matrix: MatrixConfiguration, max_concurrent_renders: int = 1) -> BatchProgress:
    """Status counts for a matrix plus a rough time-to-finish.

    The estimate assumes rows still ``rendering`` take the mean observed render
    time, spread over *max_concurrent_renders* workers.
    """
    counts = Counter(row.status for row in matrix.rows)
    total = len(matrix.rows)
    settled = counts["rendered"] + counts["failed"]

    estimate = None
    mean_seconds = _mean_render_seconds(matrix)
    if mean_seconds is not None:
        outstanding = counts["rendering"]
        waves = -(-outstanding // max(1, max_concurrent_renders))
        estimate = round(mean_seconds * waves, 3)

    return BatchProgress(
        matrix_id=matrix.id,
        total=total,
        draft=counts["draft"],
        rendering=counts["rendering"],
        rendered=counts["rendered"],
        failed=counts["failed"],
        overall_progress=round(settled / total, 4) if total else 0.0,
        estimated_time_remaining=estimate,
    )
