# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/proxmox/import_tools.py
"""
ESXi import capability of a Proxmox cluster.

Native import needs both a new enough PVE (the `esxi` storage type) and the
pve-esxi-import-tools package on the node that mounts that storage. The
package is checked and installed over SSH to the cluster host.
"""
from __future__ import annotations

import logging
import subprocess
from typing import Callable, Optional

from ..core.exceptions import RemoteApiError, TargetFailure
from ..ssh.ssh_client import SSHClient
from .client import ESXI_IMPORT_MIN_VERSION, ProxmoxClient

ESXI_IMPORT_PACKAGE = "pve-esxi-import-tools"


class EsxiImportTools:
    def __init__(self, logger: logging.Logger, ssh_factory: Callable[[str], SSHClient]) -> None:
        self.logger = logger
        self.ssh_factory = ssh_factory

    def installed(self, cluster_id: str) -> bool:
        try:
            return self.ssh_factory(cluster_id).package_installed(ESXI_IMPORT_PACKAGE)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise RemoteApiError(
                code=53, msg=f"Package check on {cluster_id} failed: {e}", cause=e,
                context={"cluster_id": cluster_id},
            ) from e

    def missing(self, pve: ProxmoxClient, cluster_id: str) -> Optional[str]:
        """None when native import works on the cluster, otherwise the reason it does not."""
        if not pve.supports_esxi_import():
            need = ".".join(str(x) for x in ESXI_IMPORT_MIN_VERSION)
            return f"Cluster {cluster_id} has no ESXi import support (needs Proxmox VE >= {need})"
        if not self.installed(cluster_id):
            return f"Cluster {cluster_id} has no ESXi import support ({ESXI_IMPORT_PACKAGE} is not installed)"
        return None

    def supported(self, pve: ProxmoxClient, cluster_id: str) -> bool:
        return self.missing(pve, cluster_id) is None

    def install(self, cluster_id: str) -> bool:
        """Install the package unless present; returns True when something was installed."""
        if self.installed(cluster_id):
            self.logger.info("%s already installed on %s", ESXI_IMPORT_PACKAGE, cluster_id)
            return False
        try:
            self.ssh_factory(cluster_id).install_package(ESXI_IMPORT_PACKAGE)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise TargetFailure(
                code=63, msg=f"Installing {ESXI_IMPORT_PACKAGE} on {cluster_id} failed", cause=e,
                context={"cluster_id": cluster_id},
            ) from e
        if not self.installed(cluster_id):
            raise TargetFailure(code=63, msg=f"{ESXI_IMPORT_PACKAGE} still missing on {cluster_id} after install")
        return True
