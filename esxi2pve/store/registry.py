# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/store/registry.py
from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional

from ..core.utils import U
from .database import Database


class VmRegistry:
    """VMs this service created on each target cluster, keyed by (cluster, vmid)."""

    def __init__(self, db: Database):
        self.db = db

    def is_taken(self, cluster_id: str, vmid: int) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM vm_registry WHERE cluster_id = ? AND vmid = ?", (cluster_id, int(vmid))
            ).fetchone()
        return row is not None

    def record(self, cluster_id: str, vmid: int, name: str, job_id: Optional[str] = None) -> bool:
        """False when the vmid is already registered for that cluster."""
        try:
            with self.db.connect() as conn:
                conn.execute(
                    "INSERT INTO vm_registry (cluster_id, vmid, name, job_id, created_at) VALUES (?, ?, ?, ?, ?)",
                    (cluster_id, int(vmid), name, job_id, U.utcnow_iso()),
                )
                conn.commit()
        except sqlite3.IntegrityError:
            return False
        return True

    def release(self, cluster_id: str, vmid: int) -> None:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM vm_registry WHERE cluster_id = ? AND vmid = ?", (cluster_id, int(vmid)))
            conn.commit()

    def list(self, cluster_id: str) -> List[Dict]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT cluster_id, vmid, name, job_id, created_at FROM vm_registry WHERE cluster_id = ? ORDER BY vmid",
                (cluster_id,),
            ).fetchall()
        return [dict(r) for r in rows]
