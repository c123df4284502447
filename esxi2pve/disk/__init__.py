# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/disk/__init__.py
from .qemu import QemuImg
from .transfer import DiskTransfer, parse_extents, safe_output_name

__all__ = ["DiskTransfer", "QemuImg", "parse_extents", "safe_output_name"]
