# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/store/jobs.py
from __future__ import annotations

import json
from typing import List, Optional

from ..jobs.models import Job, JobStatus
from .database import Database

_COLUMNS = (
    "id, kind, status, progress, targets, source_host_id, options, "
    "created_at, started_at, completed_at, error"
)


def _row_to_job(row) -> Job:
    return Job.from_dict(dict(row))


class JobStore:
    """Durable job records (source of truth for the orchestrator cache)."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, job: Job) -> None:
        with self.db.connect() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO jobs ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.kind,
                    job.status.value,
                    int(job.progress),
                    job.targets_json(),
                    job.source_host_id,
                    json.dumps(job.options, default=str),
                    job.created_at,
                    job.started_at,
                    job.completed_at,
                    job.error,
                ),
            )
            conn.commit()

    def get(self, job_id: str) -> Optional[Job]:
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list(self, *, kind: Optional[str] = None, status: Optional[JobStatus] = None, limit: int = 50) -> List[Job]:
        clauses = []
        args: list = []
        if kind:
            clauses.append("kind = ?")
            args.append(kind)
        if status is not None:
            clauses.append("status = ?")
            args.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        args.append(int(limit))
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM jobs {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
                args,
            ).fetchall()
        return [_row_to_job(r) for r in rows]
