# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/inventory/discovery.py
"""
ESXi inventory discovery.

One bulk inventory read per run; each record is normalized into a
DiscoveredVM and the host's stored snapshot is replaced as a whole.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..core.config import AppConfig, EsxiHostConfig
from ..core.exceptions import RemoteApiError, SourceUnreachable
from ..core.logger import Log
from ..store.snapshots import SnapshotStore
from ..vmware.client import VMwareClient


@dataclass
class DiskInfo:
    name: str
    size_gb: float
    source_path: str
    type: str


@dataclass
class NetworkAdapter:
    name: str
    mac_address: str
    network: str
    ip_address: Optional[str] = None


@dataclass
class DiscoveredVM:
    name: str
    power_state: str
    cpu_cores: int
    memory_mb: int
    guest_os: str
    vm_path: str = ""
    disk_gb: float = 0.0
    disks: List[DiskInfo] = field(default_factory=list)
    network_adapters: List[NetworkAdapter] = field(default_factory=list)
    raw_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DiscoveredVM":
        return cls(
            name=d["name"],
            power_state=d.get("power_state") or "unknown",
            cpu_cores=int(d.get("cpu_cores") or 0),
            memory_mb=int(d.get("memory_mb") or 0),
            guest_os=d.get("guest_os") or "Unknown",
            vm_path=d.get("vm_path") or "",
            disk_gb=float(d.get("disk_gb") or 0.0),
            disks=[DiskInfo(**x) for x in d.get("disks") or []],
            network_adapters=[NetworkAdapter(**x) for x in d.get("network_adapters") or []],
            raw_metadata=dict(d.get("raw_metadata") or {}),
        )


def _is_disk(dev: Dict[str, Any]) -> bool:
    return dev.get("_kind") == "disk" or dev.get("_type") == "VirtualDisk"


def _is_nic(dev: Dict[str, Any]) -> bool:
    return dev.get("_kind") == "nic" or "VirtualEthernet" in str(dev.get("_type") or "")


def _kb_to_gb(kb: Any) -> float:
    return round(float(kb or 0) / 1024 / 1024, 2)


def _pick_ip(addresses: List[str]) -> Optional[str]:
    if not addresses:
        return None
    for ip in addresses:
        if ":" not in ip:
            return ip
    return addresses[0]


def normalize_vm(record: Dict[str, Any]) -> DiscoveredVM:
    """Flatten one raw inventory record (see VMwareClient) into a DiscoveredVM."""
    config = record.get("config") or {}
    runtime = record.get("runtime") or {}
    guest = record.get("guest") or {}
    hardware = config.get("hardware") or {}
    devices = hardware.get("device") or []

    disks: List[DiskInfo] = []
    nics: List[NetworkAdapter] = []
    for dev in devices:
        info = dev.get("deviceInfo") or {}
        backing = dev.get("backing") or {}
        if _is_disk(dev):
            disks.append(
                DiskInfo(
                    name=info.get("label") or "Unknown",
                    size_gb=_kb_to_gb(dev.get("capacityInKB")),
                    source_path=backing.get("fileName") or "",
                    type=backing.get("_type") or "Unknown",
                )
            )
        elif _is_nic(dev):
            net = backing.get("network") or {}
            nics.append(
                NetworkAdapter(
                    name=info.get("label") or "Unknown",
                    mac_address=dev.get("macAddress") or "",
                    network=backing.get("deviceName") or net.get("name") or "Unknown",
                )
            )

    # Guest tools report addresses per MAC; without tools there is nothing to match.
    by_mac = {
        (g.get("macAddress") or "").lower(): list(g.get("ipAddress") or [])
        for g in guest.get("net") or []
        if g.get("macAddress")
    }
    for nic in nics:
        nic.ip_address = _pick_ip(by_mac.get(nic.mac_address.lower(), []))

    return DiscoveredVM(
        name=record.get("name") or "Unknown",
        power_state=runtime.get("powerState") or "unknown",
        cpu_cores=int(hardware.get("numCPU") or 0),
        memory_mb=int(hardware.get("memoryMB") or 0),
        guest_os=config.get("guestFullName") or config.get("guestId") or "Unknown",
        vm_path=(config.get("files") or {}).get("vmPathName") or "",
        disk_gb=round(sum(d.size_gb for d in disks), 2),
        disks=disks,
        network_adapters=nics,
        raw_metadata={
            "uuid": config.get("uuid"),
            "instance_uuid": config.get("instanceUuid"),
            "version": config.get("version"),
            "annotation": config.get("annotation"),
            "firmware": config.get("firmware"),
            "tools": {
                "status": guest.get("toolsStatus"),
                "version": guest.get("toolsVersion"),
                "running": guest.get("toolsRunningStatus"),
            },
        },
    )


def default_client_factory(logger: logging.Logger) -> Callable[[EsxiHostConfig], VMwareClient]:
    def make(host: EsxiHostConfig) -> VMwareClient:
        return VMwareClient(
            logger,
            host.host,
            host.user,
            host.secret() or "",
            port=host.api_port,
            insecure=host.insecure,
            timeout=60,
        )

    return make


class InventoryDiscovery:
    def __init__(
        self,
        logger: logging.Logger,
        config: AppConfig,
        snapshots: SnapshotStore,
        *,
        client_factory: Optional[Callable[[EsxiHostConfig], Any]] = None,
    ) -> None:
        self.logger = logger
        self.config = config
        self.snapshots = snapshots
        self.client_factory = client_factory or default_client_factory(logger)

    def discover(self, source_host_id: str) -> List[DiscoveredVM]:
        host = self.config.esxi_host(source_host_id)
        log = Log.bind(self.logger, host=source_host_id)
        Log.step(log, f"Discovering VMs on {host.host}")

        try:
            with self.client_factory(host) as client:
                records = client.retrieve_vm_inventory()
        except RemoteApiError as e:
            raise SourceUnreachable(
                code=3, msg=f"Inventory read failed on {host.host}: {e.msg}", cause=e,
                context={"source_host_id": source_host_id},
            ) from e

        vms = sorted((normalize_vm(r) for r in records), key=lambda v: v.name)
        self.snapshots.replace(source_host_id, [v.to_dict() for v in vms])
        Log.ok(log, f"Discovered {len(vms)} VM(s)")
        return vms

    def snapshot(self, source_host_id: str) -> List[DiscoveredVM]:
        self.config.esxi_host(source_host_id)
        return [DiscoveredVM.from_dict(d) for d in self.snapshots.load(source_host_id)]

    def find(self, source_host_id: str, name: str, *, refresh_if_missing: bool = True) -> Optional[DiscoveredVM]:
        """Look a VM up in the stored snapshot; discover once when it is not there."""
        d = self.snapshots.find(source_host_id, name)
        if d is None and refresh_if_missing:
            self.logger.info("VM %s not in the stored snapshot of %s; rediscovering", name, source_host_id)
            for vm in self.discover(source_host_id):
                if vm.name == name:
                    return vm
            return None
        return DiscoveredVM.from_dict(d) if d else None
