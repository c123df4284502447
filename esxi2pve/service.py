# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/service.py
"""
Service facade: the request/response surface an HTTP layer (or the CLI)
sits on. Every call returns `(http_status, body)`; errors map through
Esxi2PveError.http_status and bodies are plain JSON-able dicts/lists.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .core.config import AppConfig, ClusterConfig, EsxiHostConfig
from .core.exceptions import Esxi2PveError
from .disk.qemu import QemuImg
from .disk.transfer import DiskTransfer
from .distribution.job import register_distribution, submit_distribution
from .inventory.discovery import InventoryDiscovery
from .jobs.orchestrator import JobOrchestrator
from .migration.pipeline import MigrationDeps, default_pve_factory, register_migration
from .migration.submit import submit_migration
from .migration.vmid import VmidAllocator
from .proxmox.client import ProxmoxClient
from .proxmox.import_tools import ESXI_IMPORT_PACKAGE, EsxiImportTools
from .ssh.factory import ssh_factory_for
from .ssh.ssh_client import SSHClient
from .store.database import Database
from .store.registry import VmRegistry
from .store.snapshots import SnapshotStore

Response = Tuple[int, Any]


class MigrationService:
    def __init__(
        self,
        logger: logging.Logger,
        config: AppConfig,
        *,
        db: Optional[Database] = None,
        pve_factory: Optional[Callable[[ClusterConfig], ProxmoxClient]] = None,
        client_factory: Optional[Callable[[EsxiHostConfig], Any]] = None,
        ssh_factory: Optional[Callable[[str], SSHClient]] = None,
        converter: Optional[Callable[..., Path]] = None,
        recover: bool = True,
    ) -> None:
        self.logger = logger
        self.config = config
        self.db = db or Database(logger, config.database)
        self.orchestrator = JobOrchestrator(logger, self.db, workers=config.workers)
        self.snapshots = SnapshotStore(self.db)
        self.registry = VmRegistry(self.db)
        self.discovery = InventoryDiscovery(logger, config, self.snapshots, client_factory=client_factory)
        ssh_factory = ssh_factory or ssh_factory_for(logger, config)
        self.transfer = DiskTransfer(logger, ssh_factory, converter=converter or QemuImg.convert)
        self.import_tools = EsxiImportTools(logger, ssh_factory)
        self.pve_factory = pve_factory or default_pve_factory(logger)

        register_migration(
            self.orchestrator,
            logger,
            MigrationDeps(
                config=config,
                discovery=self.discovery,
                transfer=self.transfer,
                allocator=VmidAllocator(logger, self.registry),
                pve_factory=self.pve_factory,
                import_tools=self.import_tools,
            ),
        )
        register_distribution(self.orchestrator, logger, config, self.transfer)

        if recover:
            self.orchestrator.recover()

    def _call(self, fn: Callable[[], Any], ok_status: int = 200) -> Response:
        try:
            return ok_status, fn()
        except Esxi2PveError as e:
            if e.http_status >= 500:
                self.logger.error("%s: %s", type(e).__name__, e)
            else:
                self.logger.debug("%s: %s", type(e).__name__, e)
            return e.http_status, {"error": e.to_dict()}
        except Exception as e:
            self.logger.exception("Unexpected error: %s", e)
            return 500, {"error": {"type": type(e).__name__, "code": 1, "message": str(e), "context": {}}}

    # ------------------------------------------------------------------
    # jobs
    # ------------------------------------------------------------------

    def submit_migration(self, request: Mapping[str, Any]) -> Response:
        def go() -> Dict[str, Any]:
            job_id = submit_migration(
                self.logger,
                self.orchestrator,
                self.config,
                self.pve_factory,
                self.import_tools,
                request.get("source_host_id"),
                request.get("targets") or [],
                request.get("options") or {},
            )
            self.orchestrator.start(job_id)
            return {"job_id": job_id, "initial_status": "pending"}

        return self._call(go, ok_status=202)

    def submit_distribution(self, request: Mapping[str, Any]) -> Response:
        def go() -> Dict[str, Any]:
            job_id = submit_distribution(
                self.orchestrator,
                self.config,
                request.get("source_cluster_id"),
                request.get("image"),
                request.get("targets") or [],
                request.get("options") or {},
            )
            self.orchestrator.start(job_id)
            return {"job_id": job_id, "initial_status": "pending"}

        return self._call(go, ok_status=202)

    def get_job(self, job_id: str) -> Response:
        return self._call(lambda: self.orchestrator.get_status(job_id).to_dict())

    def cancel_job(self, job_id: str) -> Response:
        return self._call(lambda: self.orchestrator.cancel(job_id).to_dict())

    def list_jobs(self, kind: Optional[str] = None, limit: int = 50) -> Response:
        return self._call(lambda: [j.to_dict() for j in self.orchestrator.list_jobs(kind=kind, limit=limit)])

    # ------------------------------------------------------------------
    # clusters
    # ------------------------------------------------------------------

    def install_import_tools(self, cluster_id: str) -> Response:
        """Install the ESXi import package on a cluster so native imports can run there."""

        def go() -> Dict[str, Any]:
            self.config.cluster(cluster_id)
            changed = self.import_tools.install(cluster_id)
            return {"cluster_id": cluster_id, "package": ESXI_IMPORT_PACKAGE, "installed": changed}

        return self._call(go)

    # ------------------------------------------------------------------
    # discovery
    # ------------------------------------------------------------------

    def refresh_discovery(self, source_host_id: str) -> Response:
        return self._call(lambda: [vm.to_dict() for vm in self.discovery.discover(source_host_id)])

    def get_discovery(self, source_host_id: str) -> Response:
        return self._call(lambda: [vm.to_dict() for vm in self.discovery.snapshot(source_host_id)])

    def shutdown(self, wait: bool = True) -> None:
        self.orchestrator.shutdown(wait=wait)

