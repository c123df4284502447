# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/vmware/client.py
"""
ESXi / vCenter client for esxi2pve (pyVmomi).

Only what discovery needs: connect, pull the whole VM inventory in one
PropertyCollector round-trip, and flatten the managed objects into plain
dict records (so the rest of the code never touches pyVmomi types).
"""
from __future__ import annotations

import logging
import re
import socket
import ssl
from typing import Any, Dict, List, Optional, Tuple

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from ..core.exceptions import SourceUnreachable, wrap_remote

_BACKING_RE = re.compile(r"\[(.+?)\]\s+(.*)")

_VM_PROPS = ["name", "config", "runtime.powerState", "guest"]


def parse_backing_filename(file_name: str) -> Tuple[str, str]:
    """'[datastore1] web01/web01.vmdk' -> ('datastore1', 'web01/web01.vmdk')"""
    m = _BACKING_RE.match((file_name or "").strip())
    if not m:
        raise ValueError(f"Not a datastore path: {file_name!r}")
    return m.group(1), m.group(2)


def datastore_to_vmfs_path(file_name: str) -> str:
    """Map a datastore path onto the ESXi shell path under /vmfs/volumes."""
    if (file_name or "").startswith("/"):
        return file_name
    ds, rel = parse_backing_filename(file_name)
    return f"/vmfs/volumes/{ds}/{rel}"


def _wsdl(obj: Any) -> str:
    return str(getattr(obj, "_wsdlName", None) or type(obj).__name__)


def _device_kind(dev: Any) -> str:
    if isinstance(dev, vim.vm.device.VirtualDisk):
        return "disk"
    if isinstance(dev, vim.vm.device.VirtualEthernetCard):
        return "nic"
    return "other"


def _backing_to_dict(backing: Any) -> Dict[str, Any]:
    if backing is None:
        return {}
    out: Dict[str, Any] = {"_type": _wsdl(backing)}
    for attr in ("fileName", "deviceName", "diskMode", "thinProvisioned"):
        v = getattr(backing, attr, None)
        if v is not None:
            out[attr] = v
    net = getattr(backing, "network", None)
    if net is not None:
        out["network"] = {"name": getattr(net, "name", None)}
    port = getattr(backing, "port", None)
    if port is not None:
        out["portgroupKey"] = getattr(port, "portgroupKey", None)
    return out


def _device_to_dict(dev: Any) -> Dict[str, Any]:
    info = getattr(dev, "deviceInfo", None)
    out: Dict[str, Any] = {
        "_type": _wsdl(dev),
        "_kind": _device_kind(dev),
        "key": getattr(dev, "key", None),
        "deviceInfo": {"label": getattr(info, "label", None), "summary": getattr(info, "summary", None)},
        "backing": _backing_to_dict(getattr(dev, "backing", None)),
    }
    for attr in ("capacityInKB", "capacityInBytes", "macAddress", "addressType"):
        v = getattr(dev, attr, None)
        if v is not None:
            out[attr] = v
    return out


def _guest_to_dict(guest: Any) -> Dict[str, Any]:
    if guest is None:
        return {}
    nets = []
    for n in getattr(guest, "net", None) or []:
        nets.append(
            {
                "macAddress": getattr(n, "macAddress", None),
                "ipAddress": list(getattr(n, "ipAddress", None) or []),
                "network": getattr(n, "network", None),
                "connected": getattr(n, "connected", None),
            }
        )
    return {
        "toolsStatus": str(getattr(guest, "toolsStatus", "") or "") or None,
        "toolsVersion": getattr(guest, "toolsVersion", None),
        "toolsRunningStatus": getattr(guest, "toolsRunningStatus", None),
        "hostName": getattr(guest, "hostName", None),
        "ipAddress": getattr(guest, "ipAddress", None),
        "net": nets,
    }


def _config_to_dict(config: Any) -> Dict[str, Any]:
    if config is None:
        return {}
    hw = getattr(config, "hardware", None)
    files = getattr(config, "files", None)
    return {
        "uuid": getattr(config, "uuid", None),
        "instanceUuid": getattr(config, "instanceUuid", None),
        "version": getattr(config, "version", None),
        "annotation": getattr(config, "annotation", None),
        "guestFullName": getattr(config, "guestFullName", None),
        "guestId": getattr(config, "guestId", None),
        "firmware": getattr(config, "firmware", None),
        "files": {"vmPathName": getattr(files, "vmPathName", None)},
        "hardware": {
            "numCPU": getattr(hw, "numCPU", None),
            "numCoresPerSocket": getattr(hw, "numCoresPerSocket", None),
            "memoryMB": getattr(hw, "memoryMB", None),
            "device": [_device_to_dict(d) for d in (getattr(hw, "device", None) or [])],
        },
    }


class VMwareClient:
    """
    pyVmomi session against one ESXi host (or vCenter).
    """

    def __init__(
        self,
        logger: logging.Logger,
        host: str,
        user: str,
        password: str,
        *,
        port: int = 443,
        insecure: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self.logger = logger
        self.host = (host or "").strip()
        self.user = (user or "").strip()
        self.password = password or ""
        self.port = int(port)
        self.insecure = bool(insecure)
        self.timeout = timeout
        self.si: Any = None

    def __enter__(self) -> "VMwareClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.disconnect()
        return False

    def _ssl_context(self) -> ssl.SSLContext:
        if self.insecure:
            self.logger.warning("TLS certificate verification is DISABLED for %s (insecure=True)", self.host)
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            return ctx
        return ssl.create_default_context()

    def connect(self) -> None:
        if not (self.host and self.user):
            raise SourceUnreachable(code=2, msg="ESXi host/user not configured", context={"host": self.host})
        old_timeout = socket.getdefaulttimeout()
        try:
            if self.timeout is not None:
                socket.setdefaulttimeout(self.timeout)
            self.si = SmartConnect(
                host=self.host,
                user=self.user,
                pwd=self.password,
                port=self.port,
                sslContext=self._ssl_context(),
            )
        except Exception as e:
            self.si = None
            raise SourceUnreachable(
                code=3,
                msg=f"Failed to connect to ESXi {self.host}: {e}",
                cause=e,
                context={"host": self.host, "port": self.port},
            ) from e
        finally:
            socket.setdefaulttimeout(old_timeout)
        self.logger.info("Connected to ESXi: %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        if self.si is None:
            return
        try:
            Disconnect(self.si)
        except Exception as e:
            self.logger.warning("Error during ESXi disconnect: %s", e)
        finally:
            self.si = None

    def _content(self) -> Any:
        if not self.si:
            raise SourceUnreachable(code=3, msg="ESXi session not connected", context={"host": self.host})
        return self.si.RetrieveContent()

    def retrieve_vm_inventory(self) -> List[Dict[str, Any]]:
        """
        All VMs with name/config/power state/guest info, as plain records.
        """
        content = self._content()
        view = content.viewManager.CreateContainerView(content.rootFolder, [vim.VirtualMachine], True)
        try:
            pc = vmodl.query.PropertyCollector
            traversal = pc.TraversalSpec(name="traverseEntities", path="view", skip=False, type=vim.view.ContainerView)
            obj_spec = pc.ObjectSpec(obj=view, skip=True, selectSet=[traversal])
            prop_spec = pc.PropertySpec(type=vim.VirtualMachine, pathSet=_VM_PROPS, all=False)
            filter_spec = pc.FilterSpec(objectSet=[obj_spec], propSet=[prop_spec])
            results = content.propertyCollector.RetrieveContents([filter_spec])
        except vmodl.MethodFault as e:
            raise wrap_remote(f"Inventory retrieval failed on {self.host}: {e.msg}", e, host=self.host) from e
        finally:
            view.Destroy()

        records: List[Dict[str, Any]] = []
        for oc in results or []:
            props = {p.name: p.val for p in (oc.propSet or [])}
            records.append(
                {
                    "name": props.get("name"),
                    "config": _config_to_dict(props.get("config")),
                    "runtime": {"powerState": str(props.get("runtime.powerState") or "") or None},
                    "guest": _guest_to_dict(props.get("guest")),
                }
            )
        self.logger.debug("Retrieved %d VM record(s) from %s", len(records), self.host)
        return records
