# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/migration/__init__.py
"""
ESXi -> Proxmox VE migration job:
- options: stages, strategies, per-job options
- pipeline: the per-target runner (full pipeline / native fast path)
- vmconfig: Proxmox VM create payloads
- vmid: VMID allocation against the local registry
- submit: request validation + strategy selection
"""

from .options import MIGRATION_KIND, MigrationOptions, Stage, Strategy
from .pipeline import MigrationDeps, MigrationRunner, register_migration, resolve_strategy
from .submit import submit_migration
from .vmid import VmidAllocator

__all__ = [
    "MIGRATION_KIND",
    "MigrationDeps",
    "MigrationOptions",
    "MigrationRunner",
    "Stage",
    "Strategy",
    "VmidAllocator",
    "register_migration",
    "resolve_strategy",
    "submit_migration",
]
