# SPDX-License-Identifier: LGPL-3.0-or-later
import logging
import threading

import pytest

from esxi2pve.migration.vmid import VmidAllocator
from esxi2pve.store import Database, VmRegistry

from fakes.fake_proxmox import FakeProxmox


@pytest.fixture
def allocator(tmp_path):
    log = logging.getLogger("esxi2pve.test.vmid")
    return VmidAllocator(log, VmRegistry(Database(log, tmp_path / "s.db")))


@pytest.mark.unit
class TestVmidAllocator:
    def test_uses_cluster_nextid(self, allocator):
        assert allocator.allocate(FakeProxmox(next_id=250), "pve-a", "web01", "job-1") == 250

    def test_skips_ids_already_registered(self, allocator):
        allocator.registry.record("pve-a", 100, "old")
        allocator.registry.record("pve-a", 101, "older")

        assert allocator.allocate(FakeProxmox(next_id=100), "pve-a", "web01") == 102

    def test_release_frees_the_id(self, allocator):
        pve = FakeProxmox(next_id=100)
        vmid = allocator.allocate(pve, "pve-a", "web01")
        allocator.release("pve-a", vmid)

        assert allocator.allocate(pve, "pve-a", "web01") == vmid

    def test_concurrent_allocations_are_unique(self, allocator):
        pve = FakeProxmox(next_id=100)
        got = []

        def worker(i):
            got.append(allocator.allocate(pve, "pve-a", f"vm{i}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(got) == list(range(100, 108))
