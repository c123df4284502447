# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/jobs/cache.py
from __future__ import annotations

import threading
from typing import Dict, List, Optional

from .models import Job

DEFAULT_MAX_ENTRIES = 512


class JobCache:
    """
    In-memory job map. Advisory only: everything here can be rebuilt from
    the durable store, and entries are stored/returned as private copies.

    Holds at most `max_entries` jobs. Past that, finished jobs go first
    (least recently written first), then the least recently written of the rest.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job is not None else None

    def put(self, job: Job) -> None:
        with self._lock:
            # re-insert so dict order is write order
            self._jobs.pop(job.id, None)
            self._jobs[job.id] = job.snapshot()
            self._evict(keep=job.id)

    def _evict(self, keep: str) -> None:
        excess = len(self._jobs) - self.max_entries
        if excess <= 0:
            return
        finished = [k for k, j in self._jobs.items() if k != keep and j.is_terminal]
        victims = finished[:excess]
        if len(victims) < excess:
            rest = [k for k in self._jobs if k != keep and k not in victims]
            victims += rest[: excess - len(victims)]
        for k in victims:
            del self._jobs[k]

    def drop(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
