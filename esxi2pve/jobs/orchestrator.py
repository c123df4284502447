# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/jobs/orchestrator.py
"""
Job orchestrator.

    submit() -> job id (durably pending)
    start()  -> runs on the worker pool
    get_status() / cancel() / list_jobs() from any thread

Every mutation writes the store first, then the cache. Targets run
sequentially; cancellation is checked at each target boundary.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.exceptions import AlreadyTerminal, InvalidInput, NotFound
from ..core.logger import Log
from ..core.utils import U
from ..store.database import Database
from ..store.jobs import JobStore
from .cache import JobCache
from .models import Job, JobStatus, TargetResult, TargetStatus

CANCELLED_MESSAGE = "Cancelled by user"
INTERRUPTED_MESSAGE = "Interrupted by process restart"


class TargetSkipped(Exception):
    """Raised by a runner to mark the current target as skipped (not failed)."""


class JobRunner:
    """
    Per-job strategy plugged into the orchestrator for one job kind.

    prepare()    job-level setup; raising aborts the job with targets pending
    run_target() one target; returns the produced resource id, raises to fail
                 (TargetSkipped to skip)
    finish()     cleanup, always called; errors are logged only
    """

    base_offset: int = 0

    def prepare(self, ctx: "JobContext") -> None:
        return None

    def run_target(self, ctx: "JobContext", target_id: str) -> Optional[str]:
        raise NotImplementedError

    def finish(self, ctx: "JobContext") -> None:
        return None


RunnerFactory = Callable[[Job], JobRunner]


class JobContext:
    """What a runner sees of its job while it executes."""

    def __init__(self, orchestrator: "JobOrchestrator", job: Job, logger: logging.LoggerAdapter):
        self._orch = orchestrator
        self.job_id = job.id
        self.kind = job.kind
        self.source_host_id = job.source_host_id
        self.options: Dict[str, Any] = dict(job.options)
        self.logger = logger
        self.state: Dict[str, Any] = {}

    def set_stage(self, target_id: str, stage: str, message: Optional[str] = None) -> None:
        self._orch._set_stage(self.job_id, target_id, stage, message)

    def cancelled(self) -> bool:
        return self._orch._is_cancelled(self.job_id)


class JobOrchestrator:
    def __init__(
        self,
        logger: logging.Logger,
        db: Database,
        *,
        workers: int = 2,
        cache: Optional[JobCache] = None,
    ) -> None:
        self.logger = logger
        self.store = JobStore(db)
        self.cache = cache if cache is not None else JobCache()
        self._runners: Dict[str, RunnerFactory] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="job")

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def register(self, kind: str, factory: RunnerFactory) -> None:
        self._runners[kind] = factory

    @property
    def kinds(self) -> List[str]:
        return sorted(self._runners)

    # ------------------------------------------------------------------
    # state helpers
    # ------------------------------------------------------------------

    def _load(self, job_id: str) -> Job:
        job = self.cache.get(job_id)
        if job is None:
            job = self.store.get(job_id)
            if job is None:
                raise NotFound(code=4, msg=f"Job not found: {job_id}", context={"job_id": job_id})
            self.cache.put(job)
            self.logger.debug("Rebuilt job %s from the state database", job_id)
        return job

    def _commit(self, job: Job) -> None:
        self.store.save(job)
        self.cache.put(job)

    def _mutate(self, job_id: str, fn: Callable[[Job], Any]) -> Job:
        """Read-modify-write under the orchestrator lock. fn returning False skips the write."""
        with self._lock:
            job = self._load(job_id)
            if fn(job) is False:
                return job.snapshot()
            self._commit(job)
            return job.snapshot()

    def _is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return self._load(job_id).status is JobStatus.CANCELLED

    def _set_stage(self, job_id: str, target_id: str, stage: str, message: Optional[str]) -> None:
        def apply(job: Job) -> Optional[bool]:
            t = job.target(target_id)
            if t.status is not TargetStatus.PENDING:
                return False
            t.stage = stage
            if message is not None:
                t.message = message
            return None

        self._mutate(job_id, apply)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def submit(
        self,
        kind: str,
        targets: Sequence[str],
        *,
        source_host_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        if kind not in self._runners:
            raise InvalidInput(code=2, msg=f"Unknown job kind: {kind!r}", context={"kinds": self.kinds})
        if isinstance(targets, str):
            raise InvalidInput(code=2, msg="targets must be a list of ids, not a string")
        ids = [str(t).strip() for t in (targets or [])]
        if not ids:
            raise InvalidInput(code=2, msg="At least one target is required")
        if any(not t for t in ids):
            raise InvalidInput(code=2, msg="Target ids must be non-empty")
        dupes = sorted({t for t in ids if ids.count(t) > 1})
        if dupes:
            raise InvalidInput(code=2, msg=f"Duplicate target ids: {', '.join(dupes)}")

        job = Job(
            id=f"{kind}-{U.now_ts()}-{U.token(3)}",
            kind=kind,
            targets=[TargetResult(target_id=t) for t in ids],
            source_host_id=source_host_id,
            options=dict(options or {}),
            created_at=U.utcnow_iso(),
        )
        with self._lock:
            self._commit(job)
        Log.bind(self.logger, job=job.id).info("Queued %s job with %d target(s)", kind, len(ids))
        return job.id

    def start(self, job_id: str) -> "Future[Job]":
        self._load(job_id)
        return self._executor.submit(self.run, job_id)

    def submit_and_start(self, kind: str, targets: Sequence[str], **kw: Any) -> str:
        job_id = self.submit(kind, targets, **kw)
        self.start(job_id)
        return job_id

    def get_status(self, job_id: str) -> Job:
        with self._lock:
            return self._load(job_id).snapshot()

    def cancel(self, job_id: str) -> Job:
        def apply(job: Job) -> None:
            if job.is_terminal:
                raise AlreadyTerminal(
                    code=5,
                    msg=f"Job {job_id} is already {job.status.value}",
                    context={"job_id": job_id, "status": job.status.value},
                )
            job.status = JobStatus.CANCELLED
            job.error = CANCELLED_MESSAGE
            job.progress = 100
            job.completed_at = U.utcnow_iso()

        job = self._mutate(job_id, apply)
        Log.warn(Log.bind(self.logger, job=job_id), "Job cancelled")
        return job

    def list_jobs(self, kind: Optional[str] = None, limit: int = 50) -> List[Job]:
        return self.store.list(kind=kind, limit=limit)

    def recover(self) -> List[str]:
        """
        Finalize jobs left `running` by a previous process as failed.
        Pending jobs stay pending.
        """
        recovered: List[str] = []
        for stale in self.store.list(status=JobStatus.RUNNING, limit=100000):
            def apply(job: Job) -> Optional[bool]:
                if job.status is not JobStatus.RUNNING:
                    return False
                job.status = JobStatus.FAILED
                job.error = INTERRUPTED_MESSAGE
                job.progress = 100
                job.completed_at = U.utcnow_iso()
                return None

            self.cache.drop(stale.id)
            self._mutate(stale.id, apply)
            recovered.append(stale.id)
        if recovered:
            self.logger.warning("Marked %d interrupted job(s) as failed: %s", len(recovered), ", ".join(recovered))
        return recovered

    def pending_jobs(self) -> List[Job]:
        return self.store.list(status=JobStatus.PENDING, limit=100000)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def run(self, job_id: str) -> Job:
        """Execute a pending job to completion on the calling thread."""
        started = {"ok": False}

        def begin(job: Job) -> Optional[bool]:
            if job.status is not JobStatus.PENDING:
                return False
            job.status = JobStatus.RUNNING
            job.started_at = U.utcnow_iso()
            job.progress = 0
            started["ok"] = True
            return None

        job = self._mutate(job_id, begin)
        log = Log.bind(self.logger, job=job_id, kind=job.kind)
        if not started["ok"]:
            log.info("Not starting job in state %s", job.status.value)
            return job

        factory = self._runners.get(job.kind)
        if factory is None:
            return self._abort(job_id, f"No runner registered for kind {job.kind!r}", log)

        ctx = JobContext(self, job, log)
        runner: Optional[JobRunner] = None
        try:
            runner = factory(job)
            Log.step(log, f"Preparing {job.kind} job ({len(job.targets)} target(s))")
            try:
                runner.prepare(ctx)
            except Exception as e:
                Log.fail(log, f"Job setup failed: {e}")
                return self._abort(job_id, str(e), log)

            base = max(0, min(99, int(runner.base_offset)))
            if base:
                self._advance(job_id, base)

            target_ids = [t.target_id for t in job.targets]
            count = len(target_ids)
            for i, target_id in enumerate(target_ids):
                if self._is_cancelled(job_id):
                    log.info("Cancellation observed; stopping before target %s", target_id)
                    break
                tlog = log.bind(target=target_id)
                produced: Optional[str] = None
                try:
                    produced = runner.run_target(ctx, target_id)
                    outcome, message = TargetStatus.SUCCESS, "Completed"
                    Log.ok(tlog, f"Target done{f': {produced}' if produced else ''}")
                except TargetSkipped as e:
                    outcome, message = TargetStatus.SKIPPED, str(e) or "Skipped"
                    tlog.info("Target skipped: %s", message)
                except Exception as e:
                    outcome, message = TargetStatus.FAILED, str(e) or type(e).__name__
                    stage = self._stage_of(job_id, target_id)
                    tlog.bind(stage=stage).error("Target failed: %s", message, exc_info=self.logger.isEnabledFor(logging.DEBUG))
                progress = min(99, base + ((i + 1) * (100 - base)) // count)
                self._record(job_id, target_id, outcome, message, produced, progress)

            return self._finalize(job_id, log)
        except Exception as e:
            log.exception("Job crashed: %s", e)
            return self._abort(job_id, str(e) or type(e).__name__, log)
        finally:
            if runner is not None:
                try:
                    runner.finish(ctx)
                except Exception as e:
                    log.warning("Cleanup failed: %s", e)

    def _stage_of(self, job_id: str, target_id: str) -> Optional[str]:
        with self._lock:
            return self._load(job_id).target(target_id).stage

    def _advance(self, job_id: str, progress: int) -> None:
        def apply(job: Job) -> Optional[bool]:
            if job.status is not JobStatus.RUNNING or progress <= job.progress:
                return False
            job.progress = progress
            return None

        self._mutate(job_id, apply)

    def _record(
        self,
        job_id: str,
        target_id: str,
        outcome: TargetStatus,
        message: str,
        produced: Optional[str],
        progress: int,
    ) -> None:
        def apply(job: Job) -> None:
            t = job.target(target_id)
            if t.status is TargetStatus.PENDING:
                t.settle(outcome, message, produced)
            # a cancelled job keeps progress 100
            if job.status is JobStatus.RUNNING and progress > job.progress:
                job.progress = progress

        self._mutate(job_id, apply)

    def _finalize(self, job_id: str, log: logging.LoggerAdapter) -> Job:
        def apply(job: Job) -> Optional[bool]:
            if job.status is not JobStatus.RUNNING:
                return False
            job.status = job.final_status()
            job.progress = 100
            job.completed_at = U.utcnow_iso()
            if job.status is JobStatus.FAILED and not job.error:
                failed = [t.target_id for t in job.targets if t.status is TargetStatus.FAILED]
                job.error = f"{len(failed)} of {len(job.targets)} target(s) failed" if failed else None
            return None

        job = self._mutate(job_id, apply)
        c = job.counts()
        summary = f"Job {job.status.value}: {c['success']} ok, {c['failed']} failed, {c['skipped']} skipped"
        if job.status is JobStatus.COMPLETED:
            Log.ok(log, summary)
        else:
            Log.warn(log, summary)
        return job

    def _abort(self, job_id: str, error: str, log: logging.LoggerAdapter) -> Job:
        def apply(job: Job) -> Optional[bool]:
            if job.is_terminal:
                return False
            job.status = JobStatus.FAILED
            job.error = error
            job.progress = 100
            job.completed_at = U.utcnow_iso()
            return None

        job = self._mutate(job_id, apply)
        log.error("Job aborted: %s", error)
        return job
