"""
test_reconciliation.py — Unit tests for background reconciliation of
materials linked to an edited work, and its Celery wiring.
"""

import asyncio

import pytest

from tender_estimator.services.boq_edit_service import BOQEditService, WorkEdit
from tender_estimator.services.reconciliation import (
    STATUS_APPLIED,
    STATUS_FAILED,
    STATUS_MISSING,
    STATUS_PARTIAL,
    STATUS_STALE,
    ReconciliationRequest,
    reconcile_linked_materials,
)
from tender_estimator.workers import tasks


@pytest.fixture
def edited_work(store, make_work, make_material, make_link):
    """W1 edited to q=20 (generation 1); M1 / M2 still carry q derived from 10."""
    w1 = make_work("W1", quantity=10.0)
    m1 = make_material("M1", base_quantity=None, quantity=20.0, unit_rate=1.0, consumption=2.0)
    m2 = make_material("M2", base_quantity=None, quantity=5.0, unit_rate=4.0, conversion=0.5)
    store.seed(w1, m1, m2, make_link(w1, m1), make_link(w1, m2))
    outcome = asyncio.run(BOQEditService(store).edit_work("W1", WorkEdit(quantity=20.0)))
    return outcome.reconciliation


# ===========================================================================
# Class 1: reconcile_linked_materials
# ===========================================================================

class TestReconcile:

    def test_applies_current_work_quantity(self, store, edited_work):
        result = asyncio.run(reconcile_linked_materials(store, *_args(edited_work)))
        assert result.status == STATUS_APPLIED
        assert sorted(result.updated_material_ids) == ["M1", "M2"]
        assert store.item("M1").quantity == pytest.approx(40.0)
        assert store.item("M1").total_amount == pytest.approx(40.0)
        assert store.item("M2").quantity == pytest.approx(10.0)
        assert store.item("M2").total_amount == pytest.approx(40.0)

    def test_rerun_is_harmless(self, store, edited_work):
        asyncio.run(reconcile_linked_materials(store, *_args(edited_work)))
        snapshot = {k: v.copy() for k, v in store.items.items()}
        again = asyncio.run(reconcile_linked_materials(store, *_args(edited_work)))
        assert again.status == STATUS_APPLIED
        assert store.items == snapshot

    def test_superseded_request_is_stale(self, store, edited_work):
        asyncio.run(BOQEditService(store).edit_work("W1", WorkEdit(quantity=30.0)))
        before = store.item("M1").quantity
        result = asyncio.run(reconcile_linked_materials(store, *_args(edited_work)))
        assert result.status == STATUS_STALE
        assert result.updated_material_ids == []
        assert store.item("M1").quantity == before

    def test_deleted_work_is_missing(self, store, edited_work):
        del store.items["W1"]
        result = asyncio.run(reconcile_linked_materials(store, *_args(edited_work)))
        assert result.status == STATUS_MISSING

    def test_one_bad_material_does_not_block_others(self, store, make_work, make_material,
                                                    make_link):
        work = make_work("W1", quantity=60_000_000.0, generation=4)
        big = make_material("M1", base_quantity=None, consumption=2.0)
        ok = make_material("M2", base_quantity=None)
        store.seed(work, big, ok, make_link(work, big), make_link(work, ok))

        result = asyncio.run(reconcile_linked_materials(store, "P1", "W1", 4))

        assert result.status == STATUS_PARTIAL
        assert result.updated_material_ids == ["M2"]
        assert "M1" in result.errors
        assert store.item("M2").quantity == pytest.approx(60_000_000.0)


def _args(request: ReconciliationRequest):
    return request.position_id, request.work_id, request.generation


# ===========================================================================
# Class 2: Celery task and scheduler
# ===========================================================================

class TestReconcileTask:

    def test_success_returns_result(self, monkeypatch):
        async def fake(position_id, work_id, generation):
            return {"status": STATUS_APPLIED, "work_id": work_id, "generation": generation}
        monkeypatch.setattr(tasks, "_reconcile", fake)

        result = tasks.reconcile_work_materials("P1", "W1", 3)
        assert result["status"] == STATUS_APPLIED

    def test_failure_retries_while_attempts_remain(self, monkeypatch):
        async def boom(*args):
            raise RuntimeError("db down")
        monkeypatch.setattr(tasks, "_reconcile", boom)

        tasks.reconcile_work_materials.push_request(retries=0)
        try:
            # Outside a worker, retry re-raises the original error
            with pytest.raises(RuntimeError):
                tasks.reconcile_work_materials.run("P1", "W1", 3)
        finally:
            tasks.reconcile_work_materials.pop_request()

    def test_failure_swallowed_after_last_retry(self, monkeypatch):
        async def boom(*args):
            raise RuntimeError("db down")
        monkeypatch.setattr(tasks, "_reconcile", boom)

        task = tasks.reconcile_work_materials
        task.push_request(retries=task.max_retries)
        try:
            result = task.run("P1", "W1", 3)
        finally:
            task.pop_request()
        assert result["status"] == STATUS_FAILED
        assert "db down" in result["error"]

    def test_scheduler_queues_with_countdown(self, monkeypatch):
        calls = {}

        class _Result:
            id = "celery-123"

        def fake_apply_async(args, countdown):
            calls["args"], calls["countdown"] = args, countdown
            return _Result()
        monkeypatch.setattr(tasks.reconcile_work_materials, "apply_async", fake_apply_async)

        task_id = tasks.CeleryReconciliationScheduler(countdown=0.5).schedule(
            ReconciliationRequest("P1", "W1", 2)
        )
        assert task_id == "celery-123"
        assert calls == {"args": ["P1", "W1", 2], "countdown": 0.5}

    def test_cancel_revokes(self, monkeypatch):
        revoked = []
        monkeypatch.setattr(tasks.celery_app.control, "revoke", revoked.append)
        tasks.CeleryReconciliationScheduler().cancel("celery-123")
        assert revoked == ["celery-123"]

    def test_worker_start_installs_service_logging(self, monkeypatch):
        from tender_estimator.workers import celery_app as worker_module
        seen = {}
        monkeypatch.setattr(worker_module, "setup_logging", lambda **kw: seen.update(kw))
        worker_module.celery_setup_logging.send(sender=None)
        assert seen == {"level": worker_module.LOG_LEVEL, "json_output": worker_module.LOG_JSON}
