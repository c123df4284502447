# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/store/__init__.py
"""
SQLite persistence:
- database: connection/lock + schema
- jobs: durable job records
- snapshots: discovery snapshot per source host
- registry: VMs created per target cluster
"""

from .database import Database
from .jobs import JobStore
from .registry import VmRegistry
from .snapshots import SnapshotStore

__all__ = ["Database", "JobStore", "SnapshotStore", "VmRegistry"]
