# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/vmware/__init__.py
from .client import VMwareClient, datastore_to_vmfs_path, parse_backing_filename

__all__ = ["VMwareClient", "datastore_to_vmfs_path", "parse_backing_filename"]
