# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/ssh/ssh_client.py
from __future__ import annotations

import logging
import posixpath
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..core.utils import U
from .ssh_config import SSHConfig


@dataclass(frozen=True)
class SSHResult:
    rc: int
    stdout: str
    stderr: str
    argv: List[str]
    seconds: float


class SSHClient:
    """
    Minimal SSH/SCP helper around the OpenSSH binaries.

    Used to stage VMDK files off ESXi datastores and to push converted
    images onto Proxmox node storage.
    """

    _TRANSIENT_MARKERS = (
        "connection timed out",
        "connection refused",
        "no route to host",
        "network is unreachable",
        "could not resolve hostname",
        "temporary failure in name resolution",
        "kex_exchange_identification",
        "connection reset by peer",
        "broken pipe",
        "connection closed",
    )

    def __init__(self, logger: logging.Logger, cfg: SSHConfig):
        self.logger = logger
        self.cfg = cfg
        self.use_rsync = bool(cfg.use_rsync) and U.which("rsync") is not None

    # ----------------------------
    # argv builders
    # ----------------------------

    def _common(self) -> List[str]:
        opts: List[str] = [
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.cfg.connect_timeout}",
            "-o",
            f"ServerAliveInterval={self.cfg.server_alive_interval}",
            "-o",
            f"ServerAliveCountMax={self.cfg.server_alive_count}",
            "-o",
            f"StrictHostKeyChecking={self.cfg.strict_host_key_checking}",
        ]
        if self.cfg.known_hosts_file:
            opts += ["-o", f"UserKnownHostsFile={self.cfg.known_hosts_file}"]
        if self.cfg.identity:
            opts += ["-i", str(self.cfg.identity)]
        for o in self.cfg.ssh_opt:
            opts += ["-o", o]
        return opts

    def _ssh_args(self) -> List[str]:
        return ["-p", str(self.cfg.port)] + self._common()

    def _scp_args(self) -> List[str]:
        # -p preserves times
        return ["-P", str(self.cfg.port), "-p"] + self._common()

    def _rsync_args(self) -> List[str]:
        shell_parts: List[str] = ["ssh", "-p", str(self.cfg.port)] + self._common()
        return [
            "-a",
            "--partial",
            "--inplace",
            "-e",
            " ".join(shlex.quote(x) for x in shell_parts),
        ]

    # ----------------------------
    # command helpers
    # ----------------------------

    def _maybe_sudo(self, cmd: str) -> str:
        if not self.cfg.sudo:
            return cmd
        return f"sudo -n -- sh -c {shlex.quote(cmd)}"

    def _run_local(self, argv: Sequence[str], *, capture: bool, timeout: Optional[int]) -> SSHResult:
        """
        Execute a local ssh/scp/rsync command. Never raises on rc!=0.
        """
        t0 = time.monotonic()
        cp = U.run_cmd(self.logger, list(argv), check=False, capture=capture, timeout=timeout)
        return SSHResult(
            rc=int(cp.returncode or 0),
            stdout=(cp.stdout or "") if capture else "",
            stderr=(cp.stderr or "") if capture else "",
            argv=list(argv),
            seconds=time.monotonic() - t0,
        )

    def _looks_transient(self, res: Optional[SSHResult], exc: Optional[BaseException]) -> bool:
        """
        Retry only on connection/transport failures (ssh exit 255 or common transport errors),
        never on normal remote command failures.
        """
        if isinstance(exc, subprocess.TimeoutExpired):
            return True
        if res is None:
            return False
        if res.rc == 255:
            return True
        s = (res.stderr or "").lower()
        return any(m in s for m in self._TRANSIENT_MARKERS)

    def _raise_on_failure(self, res: SSHResult, desc: str) -> None:
        if res.rc == 0:
            return
        msg = (
            f"{desc} failed (rc={res.rc}, {res.seconds:.2f}s)\n"
            f"argv: {res.argv}\n"
            f"stderr: {(res.stderr or '').strip()}"
        ).strip()
        raise subprocess.CalledProcessError(res.rc, res.argv, output=res.stdout, stderr=msg)

    # ----------------------------
    # public API
    # ----------------------------

    def run(
        self,
        cmd: str,
        *,
        capture: bool = True,
        timeout: Optional[int] = None,
        check: bool = True,
    ) -> SSHResult:
        """
        Run a command on the remote host.

        Transport failures are retried cfg.retries times; remote command
        failures are never retried.
        """
        argv = ["ssh"] + self._ssh_args() + [self.cfg.target(), self._maybe_sudo(cmd)]

        attempts = 1 + max(0, int(self.cfg.retries))
        for attempt in range(1, attempts + 1):
            try:
                res = self._run_local(argv, capture=capture, timeout=timeout)
            except subprocess.TimeoutExpired as e:
                if attempt < attempts:
                    self.logger.warning(
                        "SSH timeout (attempt %d/%d); retrying in %.1fs: %s",
                        attempt, attempts, self.cfg.retry_sleep, e,
                    )
                    time.sleep(self.cfg.retry_sleep)
                    continue
                raise

            if attempt < attempts and self._looks_transient(res, None):
                self.logger.warning(
                    "SSH transport issue (attempt %d/%d, rc=%d); retrying in %.1fs",
                    attempt, attempts, res.rc, self.cfg.retry_sleep,
                )
                time.sleep(self.cfg.retry_sleep)
                continue

            if check:
                self._raise_on_failure(res, "ssh")
            return res

        raise RuntimeError("ssh retry loop exited without a result")

    def ssh(self, cmd: str, *, timeout: Optional[int] = None) -> str:
        """Returns stdout string, raises on failure."""
        return self.run(cmd, capture=True, timeout=timeout, check=True).stdout.strip()

    def scp_from(self, remote: str, local: Path) -> None:
        U.ensure_dir(local.parent)
        remote_spec = f"{self.cfg.target()}:{remote}"
        if self.use_rsync:
            argv = ["rsync"] + self._rsync_args() + [remote_spec, str(local)]
        else:
            argv = ["scp"] + self._scp_args() + [remote_spec, str(local)]

        res = self._run_local(argv, capture=True, timeout=None)
        self._raise_on_failure(res, "copy (from)")
        self.logger.info("Copied %s:%s -> %s", self.cfg.host, remote, local)

    def scp_to(self, local: Path, remote: str) -> None:
        remote_spec = f"{self.cfg.target()}:{remote}"

        if self.cfg.ensure_remote_dir:
            parent = posixpath.dirname(remote.rstrip("/"))
            if parent and parent not in (".", "/"):
                self.mkdir_p(parent)

        if self.use_rsync:
            argv = ["rsync"] + self._rsync_args() + [str(local), remote_spec]
        else:
            argv = ["scp"] + self._scp_args() + [str(local), remote_spec]

        res = self._run_local(argv, capture=True, timeout=None)
        self._raise_on_failure(res, "copy (to)")
        self.logger.info("Copied %s -> %s:%s", local, self.cfg.host, remote)

    # ----------------------------
    # remote queries (argument-based)
    # ----------------------------

    def _query(self, script: str, arg1: str, *, timeout: int = 15) -> str:
        payload = f"sh -c {shlex.quote(script)} -- {shlex.quote(arg1)}"
        res = self.run(payload, capture=True, timeout=timeout, check=False)
        return (res.stdout or "").strip()

    def exists(self, remote: str) -> bool:
        return self._query('if [ -e "$1" ]; then printf 1; else printf 0; fi', remote) == "1"

    def mkdir_p(self, remote_dir: str) -> None:
        payload = 'mkdir -p -- "$1"'
        cmd = f"sh -c {shlex.quote(payload)} -- {shlex.quote(remote_dir)}"
        res = self.run(cmd, capture=True, timeout=30, check=False)
        self._raise_on_failure(res, "mkdir")

    def rm_f(self, remote_path: str) -> None:
        payload = 'rm -f -- "$1"'
        cmd = f"sh -c {shlex.quote(payload)} -- {shlex.quote(remote_path)}"
        res = self.run(cmd, capture=True, timeout=60, check=False)
        self._raise_on_failure(res, "rm")

    # ----------------------------
    # Debian packages (Proxmox nodes)
    # ----------------------------

    def package_installed(self, name: str) -> bool:
        status = self._query('dpkg-query -W -f=\'${Status}\' "$1" 2>/dev/null || true', name, timeout=30)
        return status.endswith("install ok installed")

    def install_package(self, name: str, *, timeout: int = 900) -> None:
        self.logger.info("Installing %s on %s", name, self.cfg.host)
        self.ssh(f"DEBIAN_FRONTEND=noninteractive apt-get install -y -- {shlex.quote(name)}", timeout=timeout)
