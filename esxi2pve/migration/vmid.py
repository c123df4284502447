# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/migration/vmid.py
from __future__ import annotations

import logging
import threading
from typing import Optional

from ..core.exceptions import RemoteApiError
from ..proxmox.client import ProxmoxClient
from ..store.registry import VmRegistry

_MAX_VMID = 999999999


class VmidAllocator:
    """
    nextid from the cluster, then skip ids already present in the local
    registry. The chosen id is reserved in the registry right away so two
    concurrent jobs never pick the same one.
    """

    def __init__(self, logger: logging.Logger, registry: VmRegistry):
        self.logger = logger
        self.registry = registry
        self._lock = threading.Lock()

    def allocate(self, pve: ProxmoxClient, cluster_id: str, name: str, job_id: Optional[str] = None) -> int:
        with self._lock:
            vmid = pve.next_vmid()
            start = vmid
            while not self.registry.record(cluster_id, vmid, name, job_id):
                vmid += 1
                if vmid > _MAX_VMID:
                    raise RemoteApiError(code=53, msg=f"No free VMID on {cluster_id} after {start}")
            if vmid != start:
                self.logger.info("VMID %d already used on %s; allocated %d", start, cluster_id, vmid)
            return vmid

    def release(self, cluster_id: str, vmid: int) -> None:
        self.registry.release(cluster_id, vmid)
