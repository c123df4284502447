# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/jobs/models.py
from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class TargetStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TargetResult:
    target_id: str
    status: TargetStatus = TargetStatus.PENDING
    message: Optional[str] = None
    produced_resource_id: Optional[str] = None
    stage: Optional[str] = None

    def settle(self, status: TargetStatus, message: Optional[str] = None, produced_resource_id: Optional[str] = None) -> None:
        """Record the outcome once; a settled target never reverts to pending."""
        if status is TargetStatus.PENDING:
            raise ValueError("cannot settle a target back to pending")
        if self.status is not TargetStatus.PENDING:
            raise ValueError(f"target {self.target_id} already settled as {self.status.value}")
        self.status = status
        self.message = message
        self.produced_resource_id = produced_resource_id if status is TargetStatus.SUCCESS else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "message": self.message,
            "produced_resource_id": self.produced_resource_id,
            "stage": self.stage,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TargetResult":
        return cls(
            target_id=str(d["target_id"]),
            status=TargetStatus(d.get("status") or "pending"),
            message=d.get("message"),
            produced_resource_id=d.get("produced_resource_id"),
            stage=d.get("stage"),
        )


@dataclass
class Job:
    """
    One long-running operation: a source, N targets, one status.

    status == completed iff there is at least one target and every target is
    success/skipped; progress is 100 iff the status is terminal.
    """

    id: str
    kind: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    targets: List[TargetResult] = field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    source_host_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def target(self, target_id: str) -> TargetResult:
        for t in self.targets:
            if t.target_id == target_id:
                return t
        raise KeyError(target_id)

    def final_status(self) -> JobStatus:
        if self.targets and all(t.status in (TargetStatus.SUCCESS, TargetStatus.SKIPPED) for t in self.targets):
            return JobStatus.COMPLETED
        return JobStatus.FAILED

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in TargetStatus}
        for t in self.targets:
            out[t.status.value] += 1
        return out

    def snapshot(self) -> "Job":
        return copy.deepcopy(self)

    def targets_json(self) -> str:
        return json.dumps([t.to_dict() for t in self.targets])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "progress": self.progress,
            "targets": [t.to_dict() for t in self.targets],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "source_host_id": self.source_host_id,
            "options": dict(self.options),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Job":
        targets = d.get("targets") or []
        if isinstance(targets, str):
            targets = json.loads(targets)
        options = d.get("options") or {}
        if isinstance(options, str):
            options = json.loads(options)
        return cls(
            id=str(d["id"]),
            kind=str(d["kind"]),
            status=JobStatus(d.get("status") or "pending"),
            progress=int(d.get("progress") or 0),
            targets=[TargetResult.from_dict(t) for t in targets],
            started_at=d.get("started_at"),
            completed_at=d.get("completed_at"),
            error=d.get("error"),
            source_host_id=d.get("source_host_id"),
            options=dict(options),
            created_at=d.get("created_at"),
        )
