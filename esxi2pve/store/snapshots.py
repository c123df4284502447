# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/store/snapshots.py
from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from ..core.utils import U
from .database import Database


class SnapshotStore:
    """
    Latest discovery snapshot per source host.

    replace() clears the old set and commits, then inserts the new set in one
    transaction: a failed insert leaves the host with an empty snapshot rather
    than a partial one.
    """

    def __init__(self, db: Database):
        self.db = db

    def replace(self, source_host_id: str, records: List[Dict[str, Any]]) -> None:
        now = U.utcnow_iso()
        with self.db.connect() as conn:
            conn.execute("DELETE FROM discovered_vms WHERE source_host_id = ?", (source_host_id,))
            conn.commit()
            try:
                conn.executemany(
                    """
                    INSERT INTO discovered_vms (source_host_id, position, name, payload, discovered_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (source_host_id, i, str(r["name"]), json.dumps(r, sort_keys=True, default=str), now)
                        for i, r in enumerate(records)
                    ],
                )
                conn.commit()
            except (sqlite3.Error, TypeError, KeyError):
                conn.rollback()
                raise

    def load(self, source_host_id: str) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT payload FROM discovered_vms WHERE source_host_id = ? ORDER BY position",
                (source_host_id,),
            ).fetchall()
        return [json.loads(r["payload"]) for r in rows]

    def find(self, source_host_id: str, name: str) -> Optional[Dict[str, Any]]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT payload FROM discovered_vms WHERE source_host_id = ? AND name = ? ORDER BY position LIMIT 1",
                (source_host_id, name),
            ).fetchone()
        return json.loads(row["payload"]) if row else None
