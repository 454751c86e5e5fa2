import threading

import pytest

from creative_matrix_engine import service
from creative_matrix_engine.exceptions import MatrixNotFoundError, MatrixValidationError
from creative_matrix_engine.models.matrix import MatrixConfiguration
from creative_matrix_engine.render.base import CancellationToken, RenderProvider, RenderRequest, RenderResult
from creative_matrix_engine.render.mock import MockRenderProvider
from creative_matrix_engine.render.orchestrator import RenderOrchestrator
from creative_matrix_engine.store import InMemoryMatrixRepository, MatrixStore


def _payload(**overrides) -> dict:
    payload = {
        "campaignId": "summer",
        "name": "Summer matrix",
        "description": "Launch variants",
        "slots": [
            {"id": "visual", "name": "Hero visual", "type": "visual", "candidateIds": ["A", "B", "C"]},
            {"id": "copy", "name": "Headline", "type": "copy", "candidateIds": ["X", "Y"]},
        ],
    }
    payload.update(overrides)
    return payload


def _store() -> MatrixStore:
    return MatrixStore(InMemoryMatrixRepository())


class _GatedProvider(RenderProvider):
    def __init__(self) -> None:
        self.gate = threading.Event()

    def render(self, request: RenderRequest, cancel_token: CancellationToken) -> RenderResult:
        self.gate.wait(5)
        return RenderResult(output_url=f"mock://renders/{request.matrix_id}/{request.row_id}.mp4")


class _HookedRepository(InMemoryMatrixRepository):
    """Runs a one-shot hook inside the next locked read-modify-write."""

    def __init__(self) -> None:
        super().__init__()
        self.during_write = None

    def update_with(self, matrix_id, transform):
        def hooked(current):
            fields = transform(current)
            if self.during_write is not None:
                hook, self.during_write = self.during_write, None
                hook()
            return fields

        return super().update_with(matrix_id, hooked)


def _start_locked_render(store: MatrixStore, orchestrator: RenderOrchestrator):
    matrix = service.create_matrix(store, _payload(rows=[{"id": "r1", "values": {"visual": "A", "copy": "X"}}]))
    service.set_row_lock(store, matrix.id, "r1", True)
    return matrix, service.render_row(orchestrator, matrix.id, "r1")


def test_create_then_get_round_trips_slots_and_rows() -> None:
    store = _store()
    rows = [{"id": "r1", "values": {"visual": "A", "copy": "X"}}]
    created = service.create_matrix(store, _payload(rows=rows), user_id="user-1")

    fetched = service.get_matrix(store, created.id)

    assert fetched.slots == created.slots
    assert fetched.rows == created.rows
    assert fetched.created_by == "user-1"
    assert fetched.created_at is not None
    assert fetched.rows[0].status == "draft"


def test_create_requires_at_least_one_slot() -> None:
    with pytest.raises(MatrixValidationError) as exc_info:
        service.create_matrix(_store(), _payload(slots=[]))
    assert any("slots" in error for error in exc_info.value.errors)


def test_create_rejects_rows_that_miss_a_slot() -> None:
    rows = [{"id": "r1", "values": {"visual": "A"}}]
    with pytest.raises(MatrixValidationError, match="do not match"):
        service.create_matrix(_store(), _payload(rows=rows))


def test_create_rejects_lock_outside_candidates() -> None:
    slots = [{"id": "visual", "name": "Hero", "type": "visual", "candidateIds": ["A"], "locked": True, "lockedValue": "Z"}]
    with pytest.raises(MatrixValidationError):
        service.create_matrix(_store(), _payload(slots=slots))


def test_get_unknown_matrix_raises_not_found() -> None:
    with pytest.raises(MatrixNotFoundError):
        service.get_matrix(_store(), "missing")


def test_list_matrices_most_recent_first() -> None:
    store = _store()
    for matrix_id, created_at in [("old", "2026-01-01T00:00:00+00:00"), ("new", "2026-03-01T00:00:00+00:00")]:
        store.insert(MatrixConfiguration(id=matrix_id, campaign_id="summer", name=matrix_id, created_at=created_at))
    store.insert(MatrixConfiguration(id="other", campaign_id="winter", name="other"))

    assert [matrix.id for matrix in service.list_matrices(store, "summer")] == ["new", "old"]


def test_update_slots_drops_rows_that_no_longer_fit() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload(rows=[{"id": "r1", "values": {"visual": "A", "copy": "X"}}]))

    updated = service.update_matrix(
        store,
        matrix.id,
        {"slots": [{"id": "visual", "name": "Hero visual", "type": "visual", "candidateIds": ["A"]}]},
    )

    assert updated.slot_ids == ["visual"]
    assert updated.rows == []


def test_update_name_keeps_everything_else() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())

    updated = service.update_matrix(store, matrix.id, {"name": "Renamed"})

    assert updated.name == "Renamed"
    assert updated.description == "Launch variants"
    assert updated.slots == matrix.slots


def test_update_rejects_null_name() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())
    with pytest.raises(MatrixValidationError):
        service.update_matrix(store, matrix.id, {"name": None})
    assert service.get_matrix(store, matrix.id).name == "Summer matrix"


def test_generate_persists_rows() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())

    generated = service.generate_combinations(store, matrix.id, {"maxRows": 10})

    assert len(generated.rows) == 6
    assert service.get_matrix(store, matrix.id).rows == generated.rows


def test_rejected_generation_leaves_matrix_unchanged() -> None:
    store = _store()
    slots = [
        {"id": "visual", "name": "Hero visual", "type": "visual", "candidateIds": ["A"]},
        {"id": "copy", "name": "Headline", "type": "copy", "candidateIds": []},
    ]
    matrix = service.create_matrix(store, _payload(slots=slots, rows=[{"id": "r1", "values": {"visual": "A", "copy": "X"}}]))

    with pytest.raises(MatrixValidationError):
        service.generate_combinations(store, matrix.id, {"maxRows": 10})

    assert service.get_matrix(store, matrix.id).rows == matrix.rows


def test_lock_slot_then_regenerate() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())

    service.set_slot_lock(store, matrix.id, "copy", True, "X")
    generated = service.generate_combinations(store, matrix.id, {"maxRows": 10})

    assert len(generated.rows) == 3
    assert {row.values["copy"] for row in generated.rows} == {"X"}


def test_locked_row_survives_slot_unlock_and_regenerate() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload(rows=[{"id": "r1", "values": {"visual": "A", "copy": "X"}}]))
    service.set_slot_lock(store, matrix.id, "copy", True, "X")
    service.set_row_lock(store, matrix.id, "r1", True)
    service.set_slot_lock(store, matrix.id, "copy", False)

    generated = service.generate_combinations(store, matrix.id, {"maxRows": 10})

    assert generated.rows[0].id == "r1"
    assert generated.rows[0].values == {"visual": "A", "copy": "X"}
    assert generated.rows[0].status == "draft"
    assert len(generated.rows) == 6


def test_generate_with_auto_render_dispatches_rows() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())

    with RenderOrchestrator(store, MockRenderProvider()) as orchestrator:
        service.generate_combinations(store, matrix.id, {"maxRows": 2, "autoRender": True}, orchestrator=orchestrator)

    assert [row.status for row in service.get_matrix(store, matrix.id).rows] == ["rendered", "rendered"]


def test_auto_render_without_renderer_is_rejected() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())
    with pytest.raises(MatrixValidationError, match="autoRender"):
        service.generate_combinations(store, matrix.id, {"autoRender": True})


def test_invalid_generation_options_are_rejected() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())
    with pytest.raises(MatrixValidationError, match="generation options"):
        service.generate_combinations(store, matrix.id, {"maxRows": -1})


def test_batch_progress_after_partial_failure() -> None:
    store = _store()
    matrix = service.create_matrix(store, _payload())
    generated = service.generate_combinations(store, matrix.id, {"maxRows": 4})
    failing_row = generated.rows[1].id

    with RenderOrchestrator(store, MockRenderProvider(fail_rows={failing_row})) as orchestrator:
        service.render_all(orchestrator, matrix.id)
        progress = service.get_batch_progress(store, matrix.id, orchestrator)

    assert (progress.total, progress.rendered, progress.failed, progress.draft) == (4, 3, 1, 0)
    assert progress.overall_progress == 1.0
    assert progress.to_dict()["inProgress"] == 0


def test_regenerate_does_not_overwrite_a_render_that_settles_mid_write() -> None:
    repository = _HookedRepository()
    store = MatrixStore(repository)
    provider = _GatedProvider()
    with RenderOrchestrator(store, provider) as orchestrator:
        matrix, handle = _start_locked_render(store, orchestrator)

        def settle_during_write() -> None:
            provider.gate.set()
            handle.wait(timeout=0.2)

        repository.during_write = settle_during_write
        service.generate_combinations(store, matrix.id, {"maxRows": 10})
        outcome = handle.wait(timeout=5)

    rows = service.get_matrix(store, matrix.id).rows
    assert outcome.status == "rendered"
    assert rows[0].id == "r1"
    assert rows[0].status == "rendered"
    assert rows[0].output_url == outcome.output_url
    assert len(rows) == 6


def test_slot_update_does_not_overwrite_a_render_that_settles_mid_write() -> None:
    repository = _HookedRepository()
    store = MatrixStore(repository)
    provider = _GatedProvider()
    with RenderOrchestrator(store, provider) as orchestrator:
        matrix, handle = _start_locked_render(store, orchestrator)

        def settle_during_write() -> None:
            provider.gate.set()
            handle.wait(timeout=0.2)

        repository.during_write = settle_during_write
        slots = [
            {"id": "visual", "name": "Hero visual", "type": "visual", "candidateIds": ["A", "B", "C", "D"]},
            {"id": "copy", "name": "Headline", "type": "copy", "candidateIds": ["X", "Y"]},
        ]
        service.update_matrix(store, matrix.id, {"slots": slots})
        handle.wait(timeout=5)

    updated = service.get_matrix(store, matrix.id)
    assert updated.slots[0].candidate_ids == ["A", "B", "C", "D"]
    assert [(row.id, row.status) for row in updated.rows] == [("r1", "rendered")]


def test_optional_slot_flag_is_kept() -> None:
    store = _store()
    slots = [
        {"id": "visual", "name": "Hero visual", "type": "visual", "candidateIds": ["A"]},
        {"id": "cta", "name": "Call to action", "type": "copy", "candidateIds": ["Go"], "required": False},
    ]
    matrix = service.create_matrix(store, _payload(slots=slots))

    generated = service.generate_combinations(store, matrix.id, {"maxRows": 10})

    assert [slot.required for slot in service.get_matrix(store, matrix.id).slots] == [True, False]
    assert generated.slots[1].to_dict()["required"] is False
    assert generated.rows[0].values == {"visual": "A", "cta": "Go"}
