# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/migration/pipeline.py
"""
Migration runner: one job moves N VMs from one ESXi host to one Proxmox node.

Per target (VM name) either

  full_pipeline      discovering -> downloading -> converting -> uploading -> creating -> completed
  native_fast_path   discovering -> creating -> completed (Proxmox pulls the disks itself)

with `failed` reachable from any stage. Converted images of a failed target
stay in the scratch dir.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..core.config import AppConfig, ClusterConfig, EsxiHostConfig
from ..core.exceptions import TargetFailure
from ..core.logger import Log
from ..core.utils import U
from ..disk.transfer import DiskTransfer, safe_output_name
from ..inventory.discovery import DiscoveredVM, InventoryDiscovery
from ..jobs.models import Job
from ..jobs.orchestrator import JobContext, JobRunner
from ..proxmox.client import ProxmoxClient
from ..proxmox.import_tools import EsxiImportTools
from ..vmware.client import parse_backing_filename
from .options import MIGRATION_KIND, MigrationOptions, Stage, Strategy
from .vmconfig import full_pipeline_config, native_config
from .vmid import VmidAllocator


@dataclass
class MigrationDeps:
    config: AppConfig
    discovery: InventoryDiscovery
    transfer: DiskTransfer
    allocator: VmidAllocator
    pve_factory: Callable[[ClusterConfig], ProxmoxClient]
    import_tools: EsxiImportTools


def default_pve_factory(logger: logging.Logger) -> Callable[[ClusterConfig], ProxmoxClient]:
    def make(cluster: ClusterConfig) -> ProxmoxClient:
        return ProxmoxClient(
            logger,
            cluster.host,
            cluster.user,
            cluster.secret() or "",
            port=cluster.api_port,
            realm=cluster.realm,
            verify_ssl=cluster.verify_ssl,
        )

    return make


def resolve_strategy(opts: MigrationOptions, pve: ProxmoxClient, tools: EsxiImportTools) -> Strategy:
    """Explicit option wins; otherwise native when the target can import from ESXi."""
    if opts.strategy is not None:
        return opts.strategy
    return Strategy.NATIVE_FAST_PATH if tools.supported(pve, opts.cluster_id) else Strategy.FULL_PIPELINE


def _vmx_hint(vm_path: str) -> Optional[str]:
    """'[datastore1] web01/web01.vmx' -> 'datastore1/web01/web01.vmx'"""
    try:
        ds, rel = parse_backing_filename(vm_path)
    except ValueError:
        return None
    return f"{ds}/{rel}"


class MigrationRunner(JobRunner):
    def __init__(self, logger: logging.Logger, deps: MigrationDeps, job: Job):
        self.logger = logger
        self.deps = deps
        self.job_id = job.id
        self.opts = MigrationOptions.from_dict(job.options)
        self.source_host_id = job.source_host_id or ""
        self.host: Optional[EsxiHostConfig] = None
        self.cluster: Optional[ClusterConfig] = None
        self.pve: Optional[ProxmoxClient] = None
        self.strategy: Strategy = self.opts.strategy or Strategy.FULL_PIPELINE
        self.scratch: Optional[Path] = None
        self._native_missing: Optional[str] = None

    # ------------------------------------------------------------------
    # job-level
    # ------------------------------------------------------------------

    def prepare(self, ctx: JobContext) -> None:
        self.host = self.deps.config.esxi_host(self.source_host_id)
        self.cluster = self.deps.config.cluster(self.opts.cluster_id)
        self.pve = self.deps.pve_factory(self.cluster)
        self.pve.login()
        if self.opts.strategy is None:
            self.strategy = resolve_strategy(self.opts, self.pve, self.deps.import_tools)

        # A dead source aborts the job here, with every target left pending.
        Log.step(ctx.logger, f"Checking source {self.host.host}")
        self.deps.discovery.discover(self.source_host_id)
        base = Path(self.opts.scratch_dir) if self.opts.scratch_dir else self.deps.config.scratch_dir
        self.scratch = base / self.job_id
        ctx.logger.info(
            "Migrating from %s to %s/%s using %s",
            self.host.host, self.cluster.id, self.opts.node, self.strategy.value,
        )

    def run_target(self, ctx: JobContext, target_id: str) -> Optional[str]:
        log = ctx.logger.bind(target=target_id, strategy=self.strategy.value)
        current = {"stage": Stage.DISCOVERING}

        def stage(s: Stage, message: Optional[str] = None) -> None:
            current["stage"] = s
            ctx.set_stage(target_id, s.value, message)
            Log.trace(log, "stage -> %s", s.value)

        try:
            if self.strategy is Strategy.NATIVE_FAST_PATH:
                produced = self._native(ctx, target_id, stage, log)
            else:
                produced = self._full_pipeline(ctx, target_id, stage, log)
        except Exception as e:
            failed_at = current["stage"].value
            Log.fail(log.bind(stage=failed_at), f"Migration of {target_id} failed: {e}")
            ctx.set_stage(target_id, Stage.FAILED.value, f"Failed during {failed_at}")
            raise
        stage(Stage.COMPLETED, f"Created {produced}")
        return produced

    def finish(self, ctx: JobContext) -> None:
        if self.scratch is None or not self.scratch.exists():
            return
        if any(self.scratch.iterdir()):
            ctx.logger.info("Keeping artefacts of failed targets in %s", self.scratch)
            return
        try:
            self.scratch.rmdir()
        except OSError as e:
            ctx.logger.warning("Could not remove %s: %s", self.scratch, e)

    # ------------------------------------------------------------------
    # strategies
    # ------------------------------------------------------------------

    def _produced(self, vmid: int) -> str:
        assert self.cluster is not None
        return f"{self.cluster.id}/{self.opts.node}/{vmid}"

    def _create(self, ctx: JobContext, vm_name: str, build: Callable[[int], dict], log: Any) -> int:
        assert self.pve is not None and self.cluster is not None
        vmid = self.deps.allocator.allocate(self.pve, self.cluster.id, vm_name, ctx.job_id)
        try:
            upid = self.pve.create_vm(self.opts.node, build(vmid))
            self.pve.wait_task(self.opts.node, upid)
        except Exception:
            self.deps.allocator.release(self.cluster.id, vmid)
            raise
        log.info("Created VM %d on %s", vmid, self.opts.node)
        if self.opts.start_after_import:
            try:
                self.pve.start_vm(self.opts.node, vmid)
            except Exception as e:
                raise TargetFailure(
                    code=60, msg=f"VM {vmid} was created but failed to start: {e}", cause=e,
                    context={"vmid": vmid},
                ) from e
        return vmid

    def _full_pipeline(self, ctx: JobContext, vm_name: str, stage: Callable[..., None], log: Any) -> str:
        assert self.cluster is not None and self.scratch is not None
        stage(Stage.DISCOVERING, "Looking up VM")
        # prepare() refreshed the snapshot
        vm: Optional[DiscoveredVM] = self.deps.discovery.find(
            self.source_host_id, vm_name, refresh_if_missing=False
        )
        if vm is None:
            raise TargetFailure(code=61, msg=f"VM {vm_name!r} not found on {self.source_host_id}")
        if not vm.disks:
            raise TargetFailure(code=61, msg=f"VM {vm_name!r} has no disks")

        workdir = self.scratch / safe_output_name(vm_name)
        local: List[Path] = []
        n = len(vm.disks)
        for i, disk in enumerate(vm.disks):
            def on_stage(s: str, i: int = i) -> None:
                stage(Stage(s), f"Disk {i + 1}/{n}: {s}")

            def on_progress(fraction: float, i: int = i) -> None:
                stage(Stage.CONVERTING, f"Disk {i + 1}/{n}: converted {fraction:.0%}")

            local.append(
                self.deps.transfer.convert(
                    self.source_host_id, disk.source_path, workdir, f"{vm_name}-disk{i}",
                    on_stage=on_stage, on_progress=on_progress,
                )
            )

        stage(Stage.UPLOADING, f"Uploading {len(local)} disk(s)")
        remote_dir = posixpath.join(self.cluster.image_dir, self.opts.node)
        remote = [self.deps.transfer.upload(p, self.cluster.id, remote_dir) for p in local]

        stage(Stage.CREATING, "Creating VM")
        vmid = self._create(
            ctx,
            vm_name,
            lambda vmid: full_pipeline_config(
                vm, vmid=vmid, storage=self.opts.storage, bridge=self.opts.bridge, disk_paths=remote
            ),
            log,
        )

        for r in remote:
            self.deps.transfer.remove_remote(self.cluster.id, r)
        DiskTransfer.discard(self.logger, workdir)
        return self._produced(vmid)

    def _native(self, ctx: JobContext, vm_name: str, stage: Callable[..., None], log: Any) -> str:
        assert self.pve is not None and self.host is not None
        stage(Stage.DISCOVERING, "Checking native import support")
        if self._native_missing is None:
            self._native_missing = self.deps.import_tools.missing(self.pve, self.opts.cluster_id) or ""
        if self._native_missing:
            raise TargetFailure(code=62, msg=self._native_missing)

        storage = f"esxi2pve-{U.token(3)}"
        self.pve.add_esxi_storage(
            storage, self.host.host, self.host.user, self.host.secret() or "",
            skip_cert_verification=self.host.insecure,
        )
        try:
            stage(Stage.DISCOVERING, "Reading import metadata")
            volume = self._find_vmx(storage, vm_name)
            metadata = self.pve.import_metadata(self.opts.node, storage, volume)
            stage(Stage.CREATING, f"Importing {volume}")
            vmid = self._create(
                ctx,
                vm_name,
                lambda vmid: native_config(
                    metadata, vmid=vmid, name=vm_name, storage=self.opts.storage, bridge=self.opts.bridge
                ),
                log,
            )
        finally:
            try:
                self.pve.remove_storage(storage)
            except Exception as e:
                log.warning("Could not remove transient storage %s: %s", storage, e)
        return self._produced(vmid)

    def _find_vmx(self, storage: str, vm_name: str) -> str:
        assert self.pve is not None
        items = self.pve.list_storage_content(self.opts.node, storage, fmt="vmx")
        volumes = [str(i.get("volid") or "") for i in items if i.get("volid")]

        known = self.deps.discovery.find(self.source_host_id, vm_name, refresh_if_missing=False)
        hint = _vmx_hint(known.vm_path) if known and known.vm_path else None
        if hint:
            for v in volumes:
                if v.endswith(hint):
                    return v
        for v in volumes:
            if posixpath.basename(v)[: -len(".vmx")] == vm_name:
                return v
        raise TargetFailure(code=61, msg=f"No .vmx for {vm_name!r} on the ESXi import storage")


def register_migration(orchestrator: Any, logger: logging.Logger, deps: MigrationDeps) -> None:
    orchestrator.register(MIGRATION_KIND, lambda job: MigrationRunner(logger, deps, job))
