# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/core/config.py
"""
YAML configuration for esxi2pve.

Example:

    database: /var/lib/esxi2pve/state.db
    scratch_dir: /var/tmp/esxi2pve
    workers: 2
    esxi_hosts:
      esx01:
        host: esx01.example.com
        user: root
        password_env: ESX01_PASSWORD
        insecure: true
    clusters:
      pve-a:
        host: pve-a.example.com
        user: root
        realm: pam
        password_env: PVE_A_PASSWORD
        default_node: pve1
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .exceptions import ConfigError, NotFound


def _require(v: Any) -> bool:
    """True if v is meaningfully present (treats empty/whitespace-only strings as missing)."""
    if v is None:
        return False
    if isinstance(v, str):
        return v.strip() != ""
    return True


def _resolve_secret(value: Optional[str], env_name: Optional[str]) -> Optional[str]:
    """Direct value wins; otherwise read the named environment variable."""
    if _require(value):
        return str(value)
    if _require(env_name):
        return os.environ.get(str(env_name))
    return None


def _as_bool(v: Any, default: bool = False) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EsxiHostConfig:
    id: str
    host: str
    user: str = "root"
    password: Optional[str] = field(default=None, repr=False)
    password_env: Optional[str] = None
    api_port: int = 443
    ssh_port: int = 22
    ssh_identity: Optional[str] = None
    insecure: bool = False

    def secret(self) -> Optional[str]:
        return _resolve_secret(self.password, self.password_env)

    @classmethod
    def from_dict(cls, host_id: str, d: Mapping[str, Any]) -> "EsxiHostConfig":
        if not _require(d.get("host")):
            raise ConfigError(code=2, msg=f"esxi_hosts.{host_id}: 'host' is required")
        return cls(
            id=str(host_id),
            host=str(d["host"]).strip(),
            user=str(d.get("user") or "root"),
            password=d.get("password"),
            password_env=d.get("password_env"),
            api_port=int(d.get("api_port") or 443),
            ssh_port=int(d.get("ssh_port") or 22),
            ssh_identity=d.get("ssh_identity"),
            insecure=_as_bool(d.get("insecure")),
        )


@dataclass(frozen=True)
class ClusterConfig:
    id: str
    host: str
    api_port: int = 8006
    user: str = "root"
    realm: str = "pam"
    password: Optional[str] = field(default=None, repr=False)
    password_env: Optional[str] = None
    verify_ssl: bool = False
    default_node: Optional[str] = None
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_identity: Optional[str] = None
    image_dir: str = "/var/lib/vz/images"
    iso_dir: str = "/var/lib/vz/template/iso"
    iso_storage: str = "local"

    def secret(self) -> Optional[str]:
        return _resolve_secret(self.password, self.password_env)

    @classmethod
    def from_dict(cls, cluster_id: str, d: Mapping[str, Any]) -> "ClusterConfig":
        if not _require(d.get("host")):
            raise ConfigError(code=2, msg=f"clusters.{cluster_id}: 'host' is required")
        return cls(
            id=str(cluster_id),
            host=str(d["host"]).strip(),
            api_port=int(d.get("api_port") or 8006),
            user=str(d.get("user") or "root"),
            realm=str(d.get("realm") or "pam"),
            password=d.get("password"),
            password_env=d.get("password_env"),
            verify_ssl=_as_bool(d.get("verify_ssl")),
            default_node=d.get("default_node"),
            ssh_user=str(d.get("ssh_user") or "root"),
            ssh_port=int(d.get("ssh_port") or 22),
            ssh_identity=d.get("ssh_identity"),
            image_dir=str(d.get("image_dir") or "/var/lib/vz/images"),
            iso_dir=str(d.get("iso_dir") or "/var/lib/vz/template/iso"),
            iso_storage=str(d.get("iso_storage") or "local"),
        )


@dataclass(frozen=True)
class AppConfig:
    database: Path = Path("./esxi2pve.db")
    scratch_dir: Path = Path("./scratch")
    workers: int = 2
    esxi_hosts: Dict[str, EsxiHostConfig] = field(default_factory=dict)
    clusters: Dict[str, ClusterConfig] = field(default_factory=dict)

    def esxi_host(self, host_id: str) -> EsxiHostConfig:
        try:
            return self.esxi_hosts[str(host_id)]
        except KeyError:
            raise NotFound(code=2, msg=f"Unknown ESXi host: {host_id}") from None

    def cluster(self, cluster_id: str) -> ClusterConfig:
        try:
            return self.clusters[str(cluster_id)]
        except KeyError:
            raise NotFound(code=2, msg=f"Unknown cluster: {cluster_id}") from None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "AppConfig":
        if not isinstance(d, Mapping):
            raise ConfigError(code=2, msg="config: top-level YAML must be a mapping")

        hosts_raw = d.get("esxi_hosts") or {}
        clusters_raw = d.get("clusters") or {}
        if not isinstance(hosts_raw, Mapping) or not isinstance(clusters_raw, Mapping):
            raise ConfigError(code=2, msg="config: esxi_hosts and clusters must be mappings")

        workers = int(d.get("workers") or 2)
        if workers < 1:
            raise ConfigError(code=2, msg=f"config: workers must be >= 1 (got {workers})")

        return cls(
            database=Path(str(d.get("database") or "./esxi2pve.db")).expanduser(),
            scratch_dir=Path(str(d.get("scratch_dir") or "./scratch")).expanduser(),
            workers=workers,
            esxi_hosts={str(k): EsxiHostConfig.from_dict(str(k), v or {}) for k, v in hosts_raw.items()},
            clusters={str(k): ClusterConfig.from_dict(str(k), v or {}) for k, v in clusters_raw.items()},
        )


def load_config(path: Optional[Path], overrides: Optional[Mapping[str, Any]] = None) -> AppConfig:
    """
    Load YAML config and apply non-empty overrides (CLI flags win over file values).
    A missing path yields the defaults.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigError(code=2, msg=f"config file not found: {p}")
        try:
            loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(code=2, msg=f"config: invalid YAML in {p}", cause=e) from e
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError(code=2, msg=f"config: top-level YAML must be a mapping in {p}")
            data.update(loaded)

    for k, v in (overrides or {}).items():
        if _require(v):
            data[k] = v

    return AppConfig.from_dict(data)
