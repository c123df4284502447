# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/jobs/__init__.py
# The orchestrator is imported from esxi2pve.jobs.orchestrator directly;
# store.jobs depends on these models.
from .models import Job, JobStatus, TargetResult, TargetStatus

__all__ = ["Job", "JobStatus", "TargetResult", "TargetStatus"]
