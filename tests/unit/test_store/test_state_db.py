# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the SQLite state database."""
from __future__ import annotations

import pytest

from esxi2pve.jobs.models import Job, JobStatus, TargetResult, TargetStatus
from esxi2pve.store import Database, JobStore, SnapshotStore, VmRegistry

from fakes.fake_logger import FakeLogger


@pytest.fixture
def db(tmp_path):
    return Database(FakeLogger(), tmp_path / "nested" / "state.db")


def _job(job_id, kind="migration", status=JobStatus.PENDING, created="2026-01-01T00:00:00+00:00"):
    return Job(
        id=job_id,
        kind=kind,
        status=status,
        targets=[TargetResult("web01"), TargetResult("db01")],
        source_host_id="esx01",
        options={"cluster_id": "pve-a", "node": "pve1"},
        created_at=created,
    )


@pytest.mark.unit
class TestJobStore:
    def test_save_and_get_round_trip(self, db):
        store = JobStore(db)
        job = _job("migration-1")
        job.targets[0].settle(TargetStatus.SUCCESS, "Completed", "pve-a/pve1/100")
        store.save(job)

        loaded = store.get("migration-1")

        assert loaded == job

    def test_save_replaces(self, db):
        store = JobStore(db)
        job = _job("migration-1")
        store.save(job)
        job.status = JobStatus.RUNNING
        job.progress = 50
        store.save(job)

        loaded = store.get("migration-1")
        assert loaded.status is JobStatus.RUNNING
        assert loaded.progress == 50

    def test_get_missing(self, db):
        assert JobStore(db).get("nope") is None

    def test_list_filters_and_orders(self, db):
        store = JobStore(db)
        store.save(_job("m-old", created="2026-01-01T00:00:00+00:00"))
        store.save(_job("m-new", status=JobStatus.RUNNING, created="2026-01-02T00:00:00+00:00"))
        store.save(_job("d-1", kind="distribution", created="2026-01-03T00:00:00+00:00"))

        assert [j.id for j in store.list()] == ["d-1", "m-new", "m-old"]
        assert [j.id for j in store.list(kind="migration")] == ["m-new", "m-old"]
        assert [j.id for j in store.list(status=JobStatus.RUNNING)] == ["m-new"]
        assert len(store.list(limit=1)) == 1

    def test_state_survives_reopen(self, tmp_path):
        path = tmp_path / "state.db"
        JobStore(Database(FakeLogger(), path)).save(_job("migration-1"))

        assert JobStore(Database(FakeLogger(), path)).get("migration-1") is not None


@pytest.mark.unit
class TestSnapshotStore:
    def test_replace_swaps_whole_set(self, db):
        snaps = SnapshotStore(db)
        snaps.replace("esx01", [{"name": "a"}, {"name": "b"}])
        snaps.replace("esx01", [{"name": "b"}])

        assert snaps.load("esx01") == [{"name": "b"}]
        assert snaps.find("esx01", "a") is None

    def test_hosts_are_independent(self, db):
        snaps = SnapshotStore(db)
        snaps.replace("esx01", [{"name": "a"}])
        snaps.replace("esx02", [{"name": "z"}])

        assert snaps.find("esx01", "a") == {"name": "a"}
        assert snaps.find("esx02", "a") is None

    def test_failed_insert_leaves_empty_snapshot(self, db):
        snaps = SnapshotStore(db)
        snaps.replace("esx01", [{"name": "a"}])

        with pytest.raises(KeyError):
            snaps.replace("esx01", [{"name": "b"}, {"no_name": True}])

        assert snaps.load("esx01") == []


@pytest.mark.unit
class TestVmRegistry:
    def test_record_is_unique_per_cluster(self, db):
        reg = VmRegistry(db)

        assert reg.record("pve-a", 100, "web01", "migration-1") is True
        assert reg.record("pve-a", 100, "db01", "migration-1") is False
        assert reg.record("pve-b", 100, "db01", "migration-1") is True
        assert reg.is_taken("pve-a", 100)
        assert [r["name"] for r in reg.list("pve-a")] == ["web01"]

    def test_release(self, db):
        reg = VmRegistry(db)
        reg.record("pve-a", 100, "web01")
        reg.release("pve-a", 100)

        assert not reg.is_taken("pve-a", 100)
