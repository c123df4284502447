# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/ssh/factory.py
from __future__ import annotations

import logging
from typing import Callable

from ..core.config import AppConfig
from ..core.exceptions import NotFound
from .ssh_client import SSHClient
from .ssh_config import SSHConfig


def ssh_factory_for(logger: logging.Logger, config: AppConfig) -> Callable[[str], SSHClient]:
    """
    Resolve an endpoint id (an esxi_hosts or clusters key) to an SSHClient.
    ESXi hosts ship no rsync, Proxmox nodes do.
    """

    def make(endpoint_id: str) -> SSHClient:
        if endpoint_id in config.esxi_hosts:
            h = config.esxi_hosts[endpoint_id]
            cfg = SSHConfig(host=h.host, user=h.user, port=h.ssh_port, identity=h.ssh_identity)
        elif endpoint_id in config.clusters:
            cl = config.clusters[endpoint_id]
            cfg = SSHConfig(
                host=cl.host, user=cl.ssh_user, port=cl.ssh_port, identity=cl.ssh_identity, use_rsync=True
            )
        else:
            raise NotFound(code=2, msg=f"Unknown SSH endpoint: {endpoint_id}")
        return SSHClient(logger, cfg)

    return make
