# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the job orchestrator: lifecycle, progress, cancellation and recovery."""
from __future__ import annotations

import logging

import pytest

from esxi2pve.core.exceptions import AlreadyTerminal, InvalidInput, NotFound
from esxi2pve.jobs.cache import JobCache
from esxi2pve.jobs.models import Job, JobStatus, TargetResult, TargetStatus
from esxi2pve.jobs.orchestrator import (
    CANCELLED_MESSAGE,
    INTERRUPTED_MESSAGE,
    JobOrchestrator,
    JobRunner,
    TargetSkipped,
)
from esxi2pve.store.database import Database


class ScriptedRunner(JobRunner):
    """Per-target behaviour from a dict: "ok", "fail", "skip" or a callable(ctx, target_id)."""

    def __init__(self, orch, script=None, *, base_offset=0, prepare_error=None):
        self.orch = orch
        self.script = script or {}
        self.base_offset = base_offset
        self.prepare_error = prepare_error
        self.seen_progress = []
        self.finished = False

    def prepare(self, ctx):
        if self.prepare_error:
            raise self.prepare_error

    def run_target(self, ctx, target_id):
        self.seen_progress.append(self.orch.get_status(ctx.job_id).progress)
        action = self.script.get(target_id, "ok")
        if callable(action):
            return action(ctx, target_id)
        if action == "fail":
            ctx.set_stage(target_id, "converting", "Converting")
            raise RuntimeError(f"{target_id} exploded")
        if action == "skip":
            raise TargetSkipped("nothing to do")
        return f"made-{target_id}"

    def finish(self, ctx):
        self.finished = True


@pytest.fixture
def orch(tmp_path):
    o = JobOrchestrator(logging.getLogger("esxi2pve.test.orch"), Database(logging.getLogger("esxi2pve.test"), tmp_path / "s.db"), workers=1)
    yield o
    o.shutdown()


def _register(orch, **kw):
    runners = []

    def factory(job):
        r = ScriptedRunner(orch, **kw)
        runners.append(r)
        return r

    orch.register("test", factory)
    return runners


@pytest.mark.unit
class TestSubmit:
    def test_submit_creates_pending_job(self, orch):
        _register(orch)
        job_id = orch.submit("test", ["a", "b"], source_host_id="esx01", options={"x": 1})

        job = orch.get_status(job_id)
        assert job_id.startswith("test-")
        assert job.status is JobStatus.PENDING
        assert job.progress == 0
        assert [t.target_id for t in job.targets] == ["a", "b"]
        assert all(t.status is TargetStatus.PENDING for t in job.targets)
        assert job.options == {"x": 1}
        assert job.created_at

    @pytest.mark.parametrize("targets", [[], "web01", ["a", "a"], ["a", " "]])
    def test_invalid_targets_create_nothing(self, orch, targets):
        _register(orch)
        with pytest.raises(InvalidInput):
            orch.submit("test", targets)
        assert orch.list_jobs() == []

    def test_unknown_kind(self, orch):
        with pytest.raises(InvalidInput):
            orch.submit("nope", ["a"])

    def test_unknown_job(self, orch):
        with pytest.raises(NotFound):
            orch.get_status("test-missing")
        with pytest.raises(NotFound):
            orch.cancel("test-missing")


@pytest.mark.unit
class TestRun:
    def test_all_success_completes(self, orch):
        runners = _register(orch)
        job_id = orch.submit("test", ["a", "b", "c"])

        job = orch.run(job_id)

        assert job.status is JobStatus.COMPLETED
        assert job.progress == 100
        assert job.error is None
        assert [t.produced_resource_id for t in job.targets] == ["made-a", "made-b", "made-c"]
        assert job.started_at and job.completed_at
        assert runners[0].finished

    def test_middle_failure_is_isolated(self, orch):
        _register(orch, script={"b": "fail"})
        job_id = orch.submit("test", ["a", "b", "c"])

        job = orch.run(job_id)

        assert [t.status for t in job.targets] == [TargetStatus.SUCCESS, TargetStatus.FAILED, TargetStatus.SUCCESS]
        assert job.status is JobStatus.FAILED
        assert job.progress == 100
        assert job.error == "1 of 3 target(s) failed"
        failed = job.target("b")
        assert "b exploded" in failed.message
        assert failed.stage == "converting"
        assert failed.produced_resource_id is None

    def test_skipped_counts_as_done(self, orch):
        _register(orch, script={"a": "skip"})
        job = orch.run(orch.submit("test", ["a", "b"]))

        assert job.status is JobStatus.COMPLETED
        assert job.target("a").status is TargetStatus.SKIPPED
        assert job.target("a").message == "nothing to do"

    def test_progress_is_monotonic_and_capped_before_the_end(self, orch):
        runners = _register(orch, base_offset=10)
        job = orch.run(orch.submit("test", ["a", "b", "c", "d"]))

        seen = runners[0].seen_progress
        assert seen == sorted(seen)
        assert seen[0] == 10
        assert all(p < 100 for p in seen)
        assert job.progress == 100

    def test_prepare_failure_aborts_with_targets_pending(self, orch):
        runners = _register(orch, prepare_error=RuntimeError("ESXi host unreachable"))
        job = orch.run(orch.submit("test", ["a", "b"]))

        assert job.status is JobStatus.FAILED
        assert job.error == "ESXi host unreachable"
        assert job.progress == 100
        assert all(t.status is TargetStatus.PENDING for t in job.targets)
        assert runners[0].finished

    def test_only_pending_jobs_run(self, orch):
        runners = _register(orch)
        job_id = orch.submit("test", ["a"])
        orch.run(job_id)

        again = orch.run(job_id)

        assert again.status is JobStatus.COMPLETED
        assert len(runners) == 1

    def test_start_runs_on_worker_pool(self, orch):
        _register(orch)
        job_id = orch.submit("test", ["a"])

        job = orch.start(job_id).result(timeout=30)

        assert job.status is JobStatus.COMPLETED
        assert orch.get_status(job_id).status is JobStatus.COMPLETED


@pytest.mark.unit
class TestCancel:
    def test_cancel_pending_job(self, orch):
        runners = _register(orch)
        job_id = orch.submit("test", ["a", "b"])

        job = orch.cancel(job_id)
        ran = orch.run(job_id)

        assert job.status is JobStatus.CANCELLED
        assert job.progress == 100
        assert job.error == CANCELLED_MESSAGE
        assert ran.status is JobStatus.CANCELLED
        assert runners == []

    def test_cancel_terminal_job_changes_nothing(self, orch):
        _register(orch)
        job_id = orch.submit("test", ["a"])
        before = orch.run(job_id)

        with pytest.raises(AlreadyTerminal):
            orch.cancel(job_id)

        assert orch.get_status(job_id) == before

    def test_cancel_while_running_stops_at_next_target(self, orch):
        def cancel_then_ok(ctx, target_id):
            orch.cancel(ctx.job_id)
            return "made-a"

        _register(orch, script={"a": cancel_then_ok})
        job = orch.run(orch.submit("test", ["a", "b", "c"]))

        assert job.status is JobStatus.CANCELLED
        assert job.progress == 100
        assert job.target("a").status is TargetStatus.SUCCESS
        assert job.target("b").status is TargetStatus.PENDING
        assert job.target("c").status is TargetStatus.PENDING
        assert orch.store.get(job.id).status is JobStatus.CANCELLED


@pytest.mark.unit
class TestDurability:
    def test_status_rebuilt_from_store_after_cache_loss(self, orch):
        _register(orch, script={"b": "fail"})
        job_id = orch.submit("test", ["a", "b"])
        before = orch.run(job_id)

        orch.cache.clear()
        after = orch.get_status(job_id)

        assert after == before
        assert job_id in orch.cache.ids()

    def test_cache_loss_mid_run_keeps_state(self, orch):
        seen = {}

        def lose_cache(ctx, target_id):
            ctx.set_stage(target_id, "converting", "Converting")
            orch.cache.clear()
            seen["status"] = orch.get_status(ctx.job_id)
            seen["stored"] = orch.store.get(ctx.job_id)
            return f"made-{target_id}"

        _register(orch, script={"b": lose_cache})
        job_id = orch.submit("test", ["a", "b", "c"])

        job = orch.run(job_id)

        status, stored = seen["status"], seen["stored"]
        assert status == stored
        assert [t.target_id for t in status.targets] == ["a", "b", "c"]
        assert [t.status for t in status.targets] == [TargetStatus.SUCCESS, TargetStatus.PENDING, TargetStatus.PENDING]
        assert [t.stage for t in status.targets][1:] == ["converting", None]
        assert status.status is JobStatus.RUNNING
        assert status.progress == 33

        assert job.status is JobStatus.COMPLETED
        assert job.progress == 100
        assert [t.produced_resource_id for t in job.targets] == ["made-a", "made-b", "made-c"]
        assert orch.get_status(job_id) == orch.store.get(job_id)

    def test_evicted_job_is_reloaded(self, tmp_path):
        orch = JobOrchestrator(
            logging.getLogger("esxi2pve.test.orch"),
            Database(logging.getLogger("esxi2pve.test"), tmp_path / "s.db"),
            workers=1,
            cache=JobCache(max_entries=1),
        )
        try:
            _register(orch)
            first = orch.run(orch.submit("test", ["a"]))
            orch.run(orch.submit("test", ["b"]))

            assert first.id not in orch.cache.ids()
            assert orch.get_status(first.id) == first
        finally:
            orch.shutdown()

    def test_recover_fails_interrupted_jobs(self, orch):
        _register(orch)
        orch.store.save(
            Job(id="test-running", kind="test", status=JobStatus.RUNNING, progress=40,
                targets=[TargetResult("a")], created_at="2026-01-01T00:00:00+00:00")
        )
        pending_id = orch.submit("test", ["a"])

        recovered = orch.recover()

        assert recovered == ["test-running"]
        job = orch.get_status("test-running")
        assert job.status is JobStatus.FAILED
        assert job.error == INTERRUPTED_MESSAGE
        assert job.progress == 100
        assert orch.get_status(pending_id).status is JobStatus.PENDING
        assert [j.id for j in orch.pending_jobs()] == [pending_id]

    def test_list_jobs_by_kind(self, orch):
        _register(orch)
        orch.register("other", lambda job: ScriptedRunner(orch))
        orch.submit("test", ["a"])
        orch.submit("other", ["a"])

        assert [j.kind for j in orch.list_jobs(kind="other")] == ["other"]
        assert len(orch.list_jobs()) == 2
