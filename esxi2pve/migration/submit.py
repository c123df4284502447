# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/migration/submit.py
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Mapping, Optional, Sequence

from ..core.config import AppConfig, ClusterConfig
from ..core.exceptions import InvalidInput, RemoteApiError
from ..jobs.orchestrator import JobOrchestrator
from ..proxmox.client import ProxmoxClient
from ..proxmox.import_tools import EsxiImportTools
from .options import MIGRATION_KIND, MigrationOptions, Strategy
from .pipeline import resolve_strategy


def submit_migration(
    logger: logging.Logger,
    orchestrator: JobOrchestrator,
    config: AppConfig,
    pve_factory: Callable[[ClusterConfig], ProxmoxClient],
    import_tools: EsxiImportTools,
    source_host_id: Optional[str],
    targets: Sequence[str],
    options: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Validate a migration request, fix its strategy and enqueue it.
    The chosen strategy is stored in the job options.
    """
    if not source_host_id or source_host_id not in config.esxi_hosts:
        raise InvalidInput(code=2, msg=f"Unknown source host: {source_host_id!r}")
    opts = MigrationOptions.from_dict(options or {})
    if opts.cluster_id not in config.clusters:
        raise InvalidInput(code=2, msg=f"Unknown target cluster: {opts.cluster_id!r}")

    if opts.strategy is None:
        try:
            strategy = resolve_strategy(opts, pve_factory(config.clusters[opts.cluster_id]), import_tools)
        except RemoteApiError as e:
            logger.warning(
                "Capability check of %s failed (%s); using %s", opts.cluster_id, e, Strategy.FULL_PIPELINE.value
            )
            strategy = Strategy.FULL_PIPELINE
        opts = dataclasses.replace(opts, strategy=strategy)

    return orchestrator.submit(
        MIGRATION_KIND, list(targets or []), source_host_id=source_host_id, options=opts.to_dict()
    )
