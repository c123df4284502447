# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/proxmox/__init__.py
from .client import ESXI_IMPORT_MIN_VERSION, ProxmoxClient, parse_version
from .import_tools import ESXI_IMPORT_PACKAGE, EsxiImportTools

__all__ = ["ESXI_IMPORT_MIN_VERSION", "ESXI_IMPORT_PACKAGE", "EsxiImportTools", "ProxmoxClient", "parse_version"]
