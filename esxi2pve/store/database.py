# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/store/database.py
"""
SQLite state database: jobs, discovery snapshots and the VM registry.

One short-lived connection per operation, serialized by a process-wide lock,
so worker threads can share a Database instance.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        status TEXT NOT NULL,
        progress INTEGER NOT NULL DEFAULT 0,
        targets TEXT NOT NULL,
        source_host_id TEXT,
        options TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_kind ON jobs(kind, created_at)",
    """
    CREATE TABLE IF NOT EXISTS discovered_vms (
        source_host_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        name TEXT NOT NULL,
        payload TEXT NOT NULL,
        discovered_at TEXT NOT NULL,
        PRIMARY KEY (source_host_id, position)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_discovered_name ON discovered_vms(source_host_id, name)",
    """
    CREATE TABLE IF NOT EXISTS vm_registry (
        cluster_id TEXT NOT NULL,
        vmid INTEGER NOT NULL,
        name TEXT NOT NULL,
        job_id TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (cluster_id, vmid)
    )
    """,
)


class Database:
    def __init__(self, logger: logging.Logger, db_path: Path):
        self.logger = logger
        self.db_path = Path(db_path)
        self.lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            for stmt in _SCHEMA:
                conn.execute(stmt)
            conn.commit()
        self.logger.debug("State database ready: %s", self.db_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Locked connection; the caller commits. Closed on exit, rolled back if not committed."""
        with self.lock:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()
