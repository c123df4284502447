# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/ssh/__init__.py
from .factory import ssh_factory_for
from .ssh_client import SSHClient, SSHResult
from .ssh_config import SSHConfig

__all__ = ["SSHClient", "SSHConfig", "SSHResult", "ssh_factory_for"]
