# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/distribution/job.py
"""
Image distribution: copy one image from a source cluster to N target clusters.

The image is downloaded once (first 10% of progress), then uploaded to each
target's ISO directory in turn.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from ..core.config import AppConfig
from ..core.exceptions import InvalidInput
from ..core.logger import Log
from ..disk.transfer import DiskTransfer
from ..jobs.models import Job
from ..jobs.orchestrator import JobContext, JobOrchestrator, JobRunner, TargetSkipped

DISTRIBUTION_KIND = "distribution"


def image_remote_path(iso_dir: str, image: str) -> str:
    image = (image or "").strip()
    if image.startswith("/"):
        return posixpath.normpath(image)
    if "/" in image or image in ("", ".", ".."):
        raise InvalidInput(code=2, msg=f"Image must be a file name or an absolute path: {image!r}")
    return posixpath.join(iso_dir, image)


class DistributionRunner(JobRunner):
    base_offset = 10

    def __init__(self, logger: logging.Logger, config: AppConfig, transfer: DiskTransfer, job: Job):
        self.logger = logger
        self.config = config
        self.transfer = transfer
        self.job_id = job.id
        self.source_cluster_id = job.source_host_id or ""
        self.image = str(job.options.get("image") or "")
        self.storage: Optional[str] = job.options.get("storage")
        self.workdir: Optional[Path] = None
        self.local: Optional[Path] = None

    @property
    def filename(self) -> str:
        return posixpath.basename(self.image)

    def prepare(self, ctx: JobContext) -> None:
        source = self.config.cluster(self.source_cluster_id)
        remote = image_remote_path(source.iso_dir, self.image)
        self.workdir = self.config.scratch_dir / self.job_id
        Log.step(ctx.logger, f"Downloading {remote} from {source.id}")
        self.local = self.transfer.download(source.id, remote, self.workdir)

    def run_target(self, ctx: JobContext, target_id: str) -> Optional[str]:
        assert self.local is not None
        if target_id == self.source_cluster_id:
            raise TargetSkipped("Source cluster already holds the image")
        cluster = self.config.cluster(target_id)
        ctx.set_stage(target_id, "uploading", f"Uploading {self.filename}")
        self.transfer.upload(self.local, cluster.id, cluster.iso_dir)
        return f"{self.storage or cluster.iso_storage}:iso/{self.filename}"

    def finish(self, ctx: JobContext) -> None:
        DiskTransfer.discard(self.logger, self.workdir)


def register_distribution(orchestrator: JobOrchestrator, logger: logging.Logger, config: AppConfig, transfer: DiskTransfer) -> None:
    orchestrator.register(DISTRIBUTION_KIND, lambda job: DistributionRunner(logger, config, transfer, job))


def submit_distribution(
    orchestrator: JobOrchestrator,
    config: AppConfig,
    source_cluster_id: Optional[str],
    image: Optional[str],
    targets: Sequence[str],
    options: Optional[Mapping[str, Any]] = None,
) -> str:
    if not source_cluster_id or source_cluster_id not in config.clusters:
        raise InvalidInput(code=2, msg=f"Unknown source cluster: {source_cluster_id!r}")
    if not image:
        raise InvalidInput(code=2, msg="An image name is required")
    image_remote_path(config.clusters[source_cluster_id].iso_dir, image)
    unknown = [t for t in targets or [] if t not in config.clusters]
    if unknown:
        raise InvalidInput(code=2, msg=f"Unknown target cluster(s): {', '.join(map(str, unknown))}")
    opts = dict(options or {})
    opts["image"] = image
    return orchestrator.submit(DISTRIBUTION_KIND, list(targets or []), source_host_id=source_cluster_id, options=opts)
