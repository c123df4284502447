# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/inventory/__init__.py
from .discovery import DiscoveredVM, DiskInfo, InventoryDiscovery, NetworkAdapter, normalize_vm

__all__ = ["DiscoveredVM", "DiskInfo", "InventoryDiscovery", "NetworkAdapter", "normalize_vm"]
