# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/__init__.py
"""
esxi2pve - ESXi to Proxmox VE migration service

Discovers VMs on standalone ESXi hosts, migrates them to Proxmox VE
clusters (qemu-img pipeline or Proxmox's native ESXi import) and copies
ISO images between clusters. Work runs as durable, pollable jobs.

Usage as a library:

    from esxi2pve import MigrationService, load_config
    from esxi2pve.core.logger import Log

    logger = Log.setup(verbose=1)
    svc = MigrationService(logger, load_config(Path("esxi2pve.yaml")))
    status, body = svc.submit_migration({
        "source_host_id": "esx01",
        "targets": ["web01"],
        "options": {"cluster_id": "pve-a", "node": "pve1", "storage": "local-lvm"},
    })
"""

__version__ = "0.1.0"

from .core.config import AppConfig, load_config
from .core.exceptions import Esxi2PveError
from .service import MigrationService

__all__ = [
    "__version__",
    "AppConfig",
    "Esxi2PveError",
    "MigrationService",
    "load_config",
]
