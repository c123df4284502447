# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/migration/vmconfig.py
"""
Proxmox `POST /nodes/{node}/qemu` payloads for imported VMs.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..inventory.discovery import DiscoveredVM


def guess_ostype(guest_os: str) -> str:
    g = (guest_os or "").lower()
    if "windows" in g:
        if any(x in g for x in ("2022", "2025", "windows 11")):
            return "win11"
        if any(x in g for x in ("2008", "windows 7")):
            return "win7"
        return "win10"
    if any(x in g for x in ("linux", "ubuntu", "debian", "centos", "red hat", "rhel", "suse", "photon", "rocky", "alma")):
        return "l26"
    if "solaris" in g:
        return "solaris"
    return "other"


def net_spec(model: Optional[str], bridge: str, mac: Optional[str]) -> str:
    spec = f"{model or 'virtio'},bridge={bridge}"
    if mac:
        spec += f",macaddr={mac}"
    return spec


def _nic_model(adapter_name: str) -> str:
    n = (adapter_name or "").lower()
    return "e1000" if "e1000" in n else "virtio"


def full_pipeline_config(
    vm: DiscoveredVM,
    *,
    vmid: int,
    storage: str,
    bridge: str,
    disk_paths: List[str],
) -> Dict[str, Any]:
    """Config for a VM whose disks were uploaded to the node as qcow2 files."""
    cfg: Dict[str, Any] = {
        "vmid": vmid,
        "name": vm.name,
        "ostype": guess_ostype(vm.guest_os),
        "cores": max(1, vm.cpu_cores),
        "sockets": 1,
        "memory": max(16, vm.memory_mb),
        "scsihw": "virtio-scsi-pci",
        "bios": "seabios",
        "boot": "order=scsi0",
        "agent": "1",
    }
    if str(vm.raw_metadata.get("firmware") or "").lower() == "efi":
        cfg["bios"] = "ovmf"
        cfg["efidisk0"] = f"{storage}:1,efitype=4m,pre-enrolled-keys=1"

    for i, path in enumerate(disk_paths):
        cfg[f"scsi{i}"] = f"{storage}:0,import-from={path}"

    if vm.network_adapters:
        for i, nic in enumerate(vm.network_adapters):
            cfg[f"net{i}"] = net_spec(_nic_model(nic.name), bridge, nic.mac_address or None)
    else:
        cfg["net0"] = net_spec("virtio", bridge, None)
    return cfg


def native_config(
    metadata: Dict[str, Any],
    *,
    vmid: int,
    name: str,
    storage: str,
    bridge: str,
) -> Dict[str, Any]:
    """Config from a Proxmox `import-metadata` answer; disks import straight from the ESXi volume."""
    create_args = metadata.get("create-args") or {}
    disks = metadata.get("disks") or {}
    net = metadata.get("net") or {}

    cfg: Dict[str, Any] = {
        "vmid": vmid,
        "name": name,
        "ostype": create_args.get("ostype") or "other",
        "cores": create_args.get("cores") or 1,
        "sockets": create_args.get("sockets") or 1,
        "memory": create_args.get("memory") or 512,
        "scsihw": create_args.get("scsihw") or "virtio-scsi-pci",
        "bios": create_args.get("bios") or "seabios",
        "boot": "order=scsi0",
        "agent": "1",
    }

    net0 = net.get("net0")
    if isinstance(net0, dict):
        cfg["net0"] = net_spec(net0.get("model"), bridge, net0.get("macaddr"))
    else:
        cfg["net0"] = net_spec("virtio", bridge, None)

    index = 0
    for key in sorted(disks):
        disk = disks[key]
        if not isinstance(disk, dict) or "volid" not in disk:
            continue
        if key == "efidisk0":
            cfg["efidisk0"] = f"{storage}:0,efitype=4m,pre-enrolled-keys=1,import-from={disk['volid']}"
            continue
        cfg[f"scsi{index}"] = f"{storage}:0,import-from={disk['volid']}"
        index += 1
    return cfg
