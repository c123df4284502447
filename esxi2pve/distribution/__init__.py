# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/distribution/__init__.py
from .job import DISTRIBUTION_KIND, DistributionRunner, register_distribution, submit_distribution

__all__ = ["DISTRIBUTION_KIND", "DistributionRunner", "register_distribution", "submit_distribution"]
