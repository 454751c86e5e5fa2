import pytest

from creative_matrix_engine.exceptions import MatrixValidationError, RowNotFoundError
from creative_matrix_engine.models.matrix import MatrixConfiguration, Row, Slot
from creative_matrix_engine.render.mock import MockRenderProvider
from creative_matrix_engine.render.orchestrator import RenderOrchestrator
from creative_matrix_engine.store import InMemoryMatrixRepository, MatrixStore


def _store(row_count: int = 3, **row_fields) -> MatrixStore:
    visuals = [f"V{index}" for index in range(1, row_count + 1)]
    store = MatrixStore(InMemoryMatrixRepository())
    store.insert(
        MatrixConfiguration(
            id="m1",
            campaign_id="summer",
            name="Summer matrix",
            slots=[
                Slot(id="visual", name="Hero visual", type="visual", candidate_ids=visuals),
                Slot(id="copy", name="Headline", type="copy", candidate_ids=["X"]),
            ],
            rows=[
                Row(id=f"r{index}", values={"visual": visual, "copy": "X"}, **row_fields)
                for index, visual in enumerate(visuals, start=1)
            ],
        )
    )
    return store


def _statuses(store: MatrixStore) -> list[str]:
    return [row.status for row in store.get("m1").rows]


class _HookedStore(MatrixStore):
    """Runs a one-shot hook right after the next matrix read."""

    after_get = None

    def get(self, matrix_id: str) -> MatrixConfiguration:
        matrix = super().get(matrix_id)
        if self.after_get is not None:
            hook, self.after_get = self.after_get, None
            hook()
        return matrix


def _hooked_store(row_count: int = 3) -> _HookedStore:
    return _HookedStore(_store(row_count).repository)


def test_render_all_isolates_a_failing_row() -> None:
    store = _store()
    with RenderOrchestrator(store, MockRenderProvider(fail_rows={"r2"})) as orchestrator:
        result = orchestrator.render_all("m1")

    assert _statuses(store) == ["rendered", "failed", "rendered"]
    assert result.total_eligible == 3
    assert result.dispatched == 3
    assert result.failed == 1
    assert result.rendered == 2
    assert result.undispatched == 0
    assert [outcome.row_id for outcome in result.outcomes] == ["r1", "r2", "r3"]

    failed = store.get("m1").rows[1]
    assert "rejected row r2" in failed.last_error
    assert failed.output_url is None
    assert store.get("m1").rows[0].output_url.startswith("mock://renders/m1/")


def test_second_render_all_reports_nothing_to_render() -> None:
    store = _store()
    with RenderOrchestrator(store, MockRenderProvider()) as orchestrator:
        orchestrator.render_all("m1")
        second = orchestrator.render_all("m1")

    assert second.nothing_to_render
    assert second.total_eligible == 0
    assert second.message == "No draft rows to render"
    assert second.to_dict()["totalRows"] == 0


def test_concurrent_renders_are_capped() -> None:
    store = _store(row_count=6)
    provider = MockRenderProvider(delay_seconds=0.05)
    with RenderOrchestrator(store, provider, max_concurrent_renders=2) as orchestrator:
        result = orchestrator.render_all("m1")

    assert result.rendered == 6
    assert 1 <= provider.peak_in_flight <= 2


def test_render_all_without_wait_returns_rows_in_progress() -> None:
    store = _store()
    provider = MockRenderProvider(delay_seconds=0.2)
    with RenderOrchestrator(store, provider, max_concurrent_renders=3) as orchestrator:
        result = orchestrator.render_all("m1", wait=False)
        assert result.dispatched == 3
        assert result.in_progress + result.rendered == 3
        assert "rendering" in _statuses(store) or _statuses(store) == ["rendered"] * 3

    assert _statuses(store) == ["rendered"] * 3


def test_render_timeout_marks_row_failed() -> None:
    store = _store(row_count=1)
    provider = MockRenderProvider(delay_seconds=5.0)
    with RenderOrchestrator(store, provider, render_timeout_seconds=0.1) as orchestrator:
        outcome = orchestrator.render_row("m1", "r1").wait(timeout=3)

    assert outcome.status == "failed"
    assert "timed out" in outcome.error
    row = store.get("m1").rows[0]
    assert row.status == "failed"
    assert row.render_completed_at is not None


def test_render_row_retries_a_failed_row_with_new_job() -> None:
    store = _store(row_count=1)
    provider = MockRenderProvider(fail_rows={"r1"})
    with RenderOrchestrator(store, provider) as orchestrator:
        first = orchestrator.render_row("m1", "r1").wait()
        provider.fail_rows.clear()
        second = orchestrator.render_row("m1", "r1").wait()

    assert first.status == "failed"
    assert second.status == "rendered"
    assert first.render_job_id != second.render_job_id
    row = store.get("m1").rows[0]
    assert row.last_error is None
    assert row.output_url == second.output_url


def test_render_row_rejects_row_already_rendering() -> None:
    store = _store(row_count=1, status="rendering")
    with RenderOrchestrator(store, MockRenderProvider()) as orchestrator:
        with pytest.raises(MatrixValidationError, match="already rendering"):
            orchestrator.render_row("m1", "r1")


def test_render_row_unknown_row_raises() -> None:
    with RenderOrchestrator(_store(), MockRenderProvider()) as orchestrator:
        with pytest.raises(RowNotFoundError):
            orchestrator.render_row("m1", "nope")


def test_locked_rows_render_by_default() -> None:
    store = _store(locked=True)
    with RenderOrchestrator(store, MockRenderProvider()) as orchestrator:
        result = orchestrator.render_all("m1")
    assert result.rendered == 3


def test_locked_rows_skipped_when_configured() -> None:
    store = _store(locked=True)
    with RenderOrchestrator(store, MockRenderProvider(), render_locked_rows=False) as orchestrator:
        result = orchestrator.render_all("m1")
        with pytest.raises(MatrixValidationError, match="locked"):
            orchestrator.render_row("m1", "r1")

    assert result.nothing_to_render
    assert _statuses(store) == ["draft"] * 3


def test_render_all_dispatches_by_priority_but_reports_in_row_order() -> None:
    store = _store()
    store.patch_row("m1", "r3", priority=1)
    provider = MockRenderProvider()
    with RenderOrchestrator(store, provider, max_concurrent_renders=1) as orchestrator:
        result = orchestrator.render_all("m1")

    assert provider.rendered_rows == ["r3", "r1", "r2"]
    assert [outcome.row_id for outcome in result.outcomes] == ["r1", "r2", "r3"]


def test_dispatch_after_shutdown_leaves_rows_draft() -> None:
    store = _store()
    orchestrator = RenderOrchestrator(store, MockRenderProvider())
    orchestrator.shutdown()

    result = orchestrator.render_all("m1")

    assert result.dispatched == 0
    assert result.undispatched == 3
    assert _statuses(store) == ["draft"] * 3
    assert all("not accepting jobs" in outcome.error for outcome in result.outcomes)


def test_cancel_settles_job_as_failed() -> None:
    store = _store(row_count=1)
    with RenderOrchestrator(store, MockRenderProvider(delay_seconds=5.0)) as orchestrator:
        handle = orchestrator.render_row("m1", "r1")
        outcome = handle.cancel("operator stop")

    assert outcome.status == "failed"
    assert outcome.error == "operator stop"
    assert store.get("m1").rows[0].status == "failed"


def test_queue_status_reports_capacity() -> None:
    with RenderOrchestrator(_store(), MockRenderProvider(), max_concurrent_renders=4) as orchestrator:
        status = orchestrator.queue_status()
    assert status == {"maxConcurrentRenders": 4, "activeRenders": 0, "queuedRenders": 0}


def test_overlapping_render_all_dispatches_each_row_once() -> None:
    store = _hooked_store()
    provider = MockRenderProvider()
    with RenderOrchestrator(store, provider) as orchestrator:
        inner = []
        store.after_get = lambda: inner.append(orchestrator.render_all("m1"))
        outer = orchestrator.render_all("m1")

    assert sorted(provider.rendered_rows) == ["r1", "r2", "r3"]
    assert inner[0].dispatched == 3
    assert outer.total_eligible == 3
    assert outer.dispatched == 0
    assert outer.undispatched == 3
    assert [outcome.status for outcome in outer.outcomes] == ["rendered"] * 3
    assert all("expected one of: draft" in outcome.error for outcome in outer.outcomes)
    assert _statuses(store) == ["rendered"] * 3


def test_render_row_rejects_a_row_dispatched_after_it_was_read() -> None:
    store = _hooked_store(row_count=1)
    provider = MockRenderProvider(delay_seconds=0.2)
    with RenderOrchestrator(store, provider) as orchestrator:
        inner = []
        store.after_get = lambda: inner.append(orchestrator.render_row("m1", "r1"))
        with pytest.raises(MatrixValidationError, match="is rendering"):
            orchestrator.render_row("m1", "r1")
        inner[0].wait(timeout=3)

    assert provider.rendered_rows == ["r1"]
    assert _statuses(store) == ["rendered"]
