# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/ssh/ssh_config.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _is_probably_ipv6(host: str) -> bool:
    return ":" in (host or "")


def _scp_host(host: str) -> str:
    # scp/rsync need [v6] bracket form
    h = (host or "").strip()
    if _is_probably_ipv6(h) and not (h.startswith("[") and h.endswith("]")):
        return f"[{h}]"
    return h


def _clean_opt(opt: str) -> str:
    o = (opt or "").strip().replace("\r", " ").replace("\n", " ")
    return " ".join(o.split())


@dataclass(frozen=True)
class SSHConfig:
    """
    Canonical SSH connection configuration for ESXi and Proxmox nodes.
    Non-interactive only: key-based auth, BatchMode on.
    """
    host: str
    user: str = "root"
    port: int = 22
    identity: Optional[Path] = None
    ssh_opt: List[str] = field(default_factory=list)

    sudo: bool = False
    connect_timeout: int = 10
    server_alive_interval: int = 10
    server_alive_count: int = 3
    strict_host_key_checking: str = "accept-new"  # accept-new | yes | no
    known_hosts_file: Optional[Path] = None

    retries: int = 0
    retry_sleep: float = 1.0
    # ESXi ships no rsync; only enable for Linux peers.
    use_rsync: bool = False
    ensure_remote_dir: bool = True

    def __post_init__(self) -> None:
        host = (self.host or "").strip()
        if not host:
            raise ValueError("SSHConfig.host must not be empty")
        object.__setattr__(self, "host", host)

        user = (self.user or "").strip()
        if not user:
            raise ValueError("SSHConfig.user must not be empty")
        object.__setattr__(self, "user", user)

        if self.identity is not None:
            object.__setattr__(self, "identity", Path(self.identity).expanduser())

        if self.known_hosts_file is not None:
            object.__setattr__(self, "known_hosts_file", Path(self.known_hosts_file).expanduser())

        cleaned: List[str] = []
        for opt in self.ssh_opt or []:
            o = _clean_opt(opt)
            if o and o not in cleaned:
                cleaned.append(o)
        object.__setattr__(self, "ssh_opt", cleaned)

        if self.port <= 0 or self.port > 65535:
            raise ValueError(f"Invalid SSH port: {self.port}")

        if self.strict_host_key_checking not in ("accept-new", "yes", "no"):
            raise ValueError(f"Invalid StrictHostKeyChecking policy: {self.strict_host_key_checking!r}")

    def target(self) -> str:
        return f"{self.user}@{_scp_host(self.host)}"
