# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/proxmox/client.py
"""
Proxmox VE REST client (requests).

Ticket authentication against /api2/json/access/ticket; every write carries
the CSRFPreventionToken header. Failures surface as RemoteApiError with the
method/path in context.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
import requests.adapters
import urllib3

from ..core.exceptions import RemoteApiError, wrap_remote

# ESXi import storage ("esxi" storage type + import-metadata) landed in PVE 8.2.
ESXI_IMPORT_MIN_VERSION: Tuple[int, int] = (8, 2)

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


def parse_version(version: str) -> Optional[Tuple[int, int]]:
    m = _VERSION_RE.match((version or "").strip())
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


class ProxmoxClient:
    def __init__(
        self,
        logger: logging.Logger,
        host: str,
        user: str,
        password: str,
        *,
        port: int = 8006,
        realm: str = "pam",
        verify_ssl: bool = False,
        timeout: float = 30.0,
        http_client: Optional[Any] = None,  # For testing/mocking
    ) -> None:
        if not host:
            raise ValueError("Host cannot be empty")
        if not 1 <= port <= 65535:
            raise ValueError(f"Invalid port: {port}")

        self.logger = logger
        self.host = host.strip()
        self.port = port
        self.user = user if "@" in user else f"{user}@{realm}"
        self.password = password or ""
        self.verify_ssl = verify_ssl
        self.timeout = timeout

        self._http_client = http_client or requests
        self._session: Optional[Any] = None
        self._ticket: Optional[str] = None
        self._csrf: Optional[str] = None

        if not self.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @property
    def base_url(self) -> str:
        return f"https://{self.host}:{self.port}/api2/json"

    @property
    def session(self) -> Any:
        if self._session is None:
            session = self._http_client.Session()
            session.verify = self.verify_ssl
            adapter = self._http_client.adapters.HTTPAdapter(pool_connections=4, pool_maxsize=16, max_retries=0)
            session.mount("https://", adapter)
            self._session = session
        return self._session

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def login(self) -> None:
        url = f"{self.base_url}/access/ticket"
        try:
            resp = self.session.post(
                url, data={"username": self.user, "password": self.password}, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise wrap_remote(f"Proxmox {self.host} unreachable: {e}", e, host=self.host) from e
        if resp.status_code != 200:
            raise wrap_remote(
                f"Proxmox authentication failed for {self.user} (HTTP {resp.status_code})",
                host=self.host,
            )
        data = (resp.json() or {}).get("data") or {}
        self._ticket = data.get("ticket")
        self._csrf = data.get("CSRFPreventionToken")
        if not self._ticket:
            raise wrap_remote("Proxmox authentication returned no ticket", host=self.host)
        self.session.cookies.set("PVEAuthCookie", self._ticket)
        self.logger.debug("Authenticated to Proxmox %s as %s", self.host, self.user)

    def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        One API call; returns the `data` member of the JSON envelope.
        """
        if self._ticket is None:
            self.login()

        method = method.upper()
        headers: Dict[str, str] = {}
        if method != "GET" and self._csrf:
            headers["CSRFPreventionToken"] = self._csrf

        url = f"{self.base_url}{path}"
        self.logger.debug("PVE %s %s", method, path)
        try:
            resp = self.session.request(
                method, url, data=data, params=params, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise wrap_remote(f"Proxmox {method} {path} failed: {e}", e, host=self.host, path=path) from e

        if resp.status_code >= 400:
            reason = (getattr(resp, "reason", "") or "").strip()
            detail = ""
            try:
                errors = (resp.json() or {}).get("errors")
                if errors:
                    detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
            except ValueError:
                pass
            raise RemoteApiError(
                code=51,
                msg=f"Proxmox {method} {path} -> HTTP {resp.status_code} {reason}{(': ' + detail) if detail else ''}",
                context={"host": self.host, "path": path, "status": resp.status_code},
            )
        try:
            return (resp.json() or {}).get("data")
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # cluster / capability
    # ------------------------------------------------------------------

    def version(self) -> str:
        data = self.request("GET", "/version") or {}
        return str(data.get("version") or "")

    def supports_esxi_import(self) -> bool:
        v = parse_version(self.version())
        return v is not None and v >= ESXI_IMPORT_MIN_VERSION

    def next_vmid(self) -> int:
        data = self.request("GET", "/cluster/nextid")
        try:
            return int(data)
        except (TypeError, ValueError) as e:
            raise wrap_remote(f"Unexpected /cluster/nextid response: {data!r}", e, host=self.host) from e

    # ------------------------------------------------------------------
    # ESXi import storage
    # ------------------------------------------------------------------

    def add_esxi_storage(self, name: str, server: str, username: str, password: str, *, skip_cert_verification: bool = True) -> str:
        self.logger.info("Adding ESXi import storage %s -> %s", name, server)
        self.request(
            "POST",
            "/storage",
            {
                "storage": name,
                "type": "esxi",
                "server": server,
                "username": username,
                "password": password,
                "skip-cert-verification": 1 if skip_cert_verification else 0,
                "content": "import",
            },
        )
        return name

    def remove_storage(self, name: str) -> None:
        self.request("DELETE", f"/storage/{quote(name, safe='')}")
        self.logger.info("Removed storage %s", name)

    def list_storage_content(self, node: str, storage: str, *, fmt: Optional[str] = None) -> List[Dict[str, Any]]:
        items = list(self.request("GET", f"/nodes/{node}/storage/{storage}/content") or [])
        if fmt is not None:
            items = [i for i in items if i.get("format") == fmt]
        return items

    def import_metadata(self, node: str, storage: str, volume: str) -> Dict[str, Any]:
        data = self.request("GET", f"/nodes/{node}/storage/{storage}/import-metadata", params={"volume": volume})
        if not data:
            raise wrap_remote(f"No import metadata for {volume}", host=self.host, volume=volume)
        return dict(data)

    # ------------------------------------------------------------------
    # VMs / tasks
    # ------------------------------------------------------------------

    def create_vm(self, node: str, config: Dict[str, Any]) -> str:
        """POST /nodes/{node}/qemu; returns the task UPID."""
        return str(self.request("POST", f"/nodes/{node}/qemu", config) or "")

    def start_vm(self, node: str, vmid: int) -> str:
        return str(self.request("POST", f"/nodes/{node}/qemu/{vmid}/status/start") or "")

    def task_status(self, node: str, upid: str) -> Dict[str, Any]:
        return dict(self.request("GET", f"/nodes/{node}/tasks/{quote(upid, safe='')}/status") or {})

    def wait_task(self, node: str, upid: str, *, timeout: float = 3600.0, poll_s: float = 2.0) -> None:
        """Block until the task stops; raises RemoteApiError unless exitstatus is OK."""
        if not upid:
            return
        deadline = time.monotonic() + timeout
        while True:
            st = self.task_status(node, upid)
            if st.get("status") == "stopped":
                if st.get("exitstatus") != "OK":
                    raise RemoteApiError(
                        code=52,
                        msg=f"Proxmox task failed: {st.get('exitstatus') or 'unknown'}",
                        context={"host": self.host, "upid": upid},
                    )
                return
            if time.monotonic() > deadline:
                raise RemoteApiError(code=52, msg=f"Proxmox task timed out after {timeout:.0f}s", context={"upid": upid})
            time.sleep(poll_s)
