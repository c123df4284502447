# SPDX-License-Identifier: LGPL-3.0-or-later
import pytest

from esxi2pve.jobs.cache import JobCache
from esxi2pve.jobs.models import Job, JobStatus, TargetResult, TargetStatus


def _job(*statuses):
    job = Job(id="j", kind="migration", targets=[TargetResult(f"t{i}") for i in range(len(statuses))])
    for t, s in zip(job.targets, statuses):
        if s is not TargetStatus.PENDING:
            t.settle(s, s.value)
    return job


@pytest.mark.unit
class TestTargetResult:
    def test_settle_once(self):
        t = TargetResult("web01")
        t.settle(TargetStatus.SUCCESS, "Completed", "pve-a/pve1/100")

        assert t.produced_resource_id == "pve-a/pve1/100"
        with pytest.raises(ValueError):
            t.settle(TargetStatus.FAILED, "late")

    def test_cannot_settle_to_pending(self):
        with pytest.raises(ValueError):
            TargetResult("web01").settle(TargetStatus.PENDING)

    def test_produced_only_on_success(self):
        t = TargetResult("web01")
        t.settle(TargetStatus.FAILED, "boom", "pve-a/pve1/100")
        assert t.produced_resource_id is None


@pytest.mark.unit
class TestJobStatusRules:
    def test_completed_iff_all_success_or_skipped(self):
        assert _job(TargetStatus.SUCCESS, TargetStatus.SKIPPED).final_status() is JobStatus.COMPLETED
        assert _job(TargetStatus.SUCCESS, TargetStatus.FAILED).final_status() is JobStatus.FAILED
        assert _job(TargetStatus.SUCCESS, TargetStatus.PENDING).final_status() is JobStatus.FAILED

    def test_no_targets_is_never_completed(self):
        assert _job().final_status() is JobStatus.FAILED

    def test_terminal_flags(self):
        assert not JobStatus.PENDING.terminal
        assert not JobStatus.RUNNING.terminal
        assert JobStatus.CANCELLED.terminal

    def test_counts(self):
        assert _job(TargetStatus.SUCCESS, TargetStatus.FAILED, TargetStatus.FAILED).counts() == {
            "pending": 0, "success": 1, "failed": 2, "skipped": 0,
        }

    def test_from_dict_accepts_json_columns(self):
        job = _job(TargetStatus.SUCCESS)
        row = job.to_dict()
        row["targets"] = job.targets_json()
        row["options"] = '{"node": "pve1"}'

        back = Job.from_dict(row)

        assert back.targets == job.targets
        assert back.options == {"node": "pve1"}


@pytest.mark.unit
class TestJobCache:
    def test_stores_copies(self):
        cache = JobCache()
        job = _job(TargetStatus.PENDING)
        cache.put(job)
        job.progress = 50

        assert cache.get("j").progress == 0
        got = cache.get("j")
        got.progress = 70
        assert cache.get("j").progress == 0

    def test_drop_and_clear(self):
        cache = JobCache()
        cache.put(_job())
        assert len(cache) == 1
        cache.drop("j")
        cache.drop("j")
        assert cache.get("j") is None
        cache.put(_job())
        cache.clear()
        assert cache.ids() == []

    def test_cap_evicts_finished_jobs_first(self):
        cache = JobCache(max_entries=3)
        for job_id, status in [("done-1", JobStatus.COMPLETED), ("live", JobStatus.RUNNING), ("done-2", JobStatus.FAILED)]:
            cache.put(Job(id=job_id, kind="migration", status=status))

        cache.put(Job(id="new", kind="migration"))

        assert cache.ids() == ["live", "done-2", "new"]

    def test_cap_falls_back_to_oldest_entry(self):
        cache = JobCache(max_entries=2)
        for job_id in ("a", "b", "c"):
            cache.put(Job(id=job_id, kind="migration", status=JobStatus.RUNNING))

        assert cache.ids() == ["b", "c"]
        assert len(cache) == 2

    def test_rewrite_refreshes_position(self):
        cache = JobCache(max_entries=2)
        cache.put(Job(id="a", kind="migration", status=JobStatus.RUNNING))
        cache.put(Job(id="b", kind="migration", status=JobStatus.RUNNING))
        cache.put(Job(id="a", kind="migration", status=JobStatus.RUNNING, progress=50))
        cache.put(Job(id="c", kind="migration", status=JobStatus.RUNNING))

        assert cache.ids() == ["a", "c"]
        assert cache.get("a").progress == 50

    def test_rejects_empty_cap(self):
        with pytest.raises(ValueError):
            JobCache(max_entries=0)
