# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/disk/transfer.py
"""
Disk staging, conversion and upload.

    ESXi datastore --scp--> scratch/staging-<token>/ --qemu-img--> scratch/<name>.qcow2 --scp--> PVE node

The converted image is kept locally when the upload fails, so a retry only
repeats the upload.
"""
from __future__ import annotations

import logging
import posixpath
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from ..core.exceptions import TargetFailure
from ..core.utils import U
from ..ssh.ssh_client import SSHClient
from ..vmware.client import datastore_to_vmfs_path
from .qemu import QemuImg

# RW 41943040 VMFS "web01-flat.vmdk"
# RW 41943040 SPARSE "web01-s001.vmdk" 0
_EXTENT_RE = re.compile(r'^\s*(RW|RDONLY|NOACCESS)\s+\d+\s+(\w+)\s+"([^"]+)"', re.MULTILINE)

_NAME_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")

_DESCRIPTOR_MAX_BYTES = 64 * 1024


def parse_extents(descriptor_text: str) -> List[str]:
    """
    Extent file names referenced by a VMDK text descriptor, in order.
    Returns [] for binary (monolithic) VMDKs.
    """
    out: List[str] = []
    for m in _EXTENT_RE.finditer(descriptor_text or ""):
        if m.group(2).upper() == "ZERO":
            continue
        name = m.group(3).strip()
        if name and name not in out:
            out.append(name)
    return out


def safe_output_name(name: str) -> str:
    n = _NAME_SAFE_RE.sub("-", (name or "").strip()).strip("-.")
    return n or "disk"


class DiskTransfer:
    """
    Stages VMDKs off ESXi, converts them to qcow2 and pushes the result to a
    Proxmox node. `ssh_factory(host_key)` builds an SSHClient for a host; it is
    injected so tests can substitute fakes.
    """

    def __init__(
        self,
        logger: logging.Logger,
        ssh_factory: Callable[[str], SSHClient],
        *,
        converter: Callable[..., Path] = QemuImg.convert,
    ) -> None:
        self.logger = logger
        self.ssh_factory = ssh_factory
        self.converter = converter

    # ------------------------------------------------------------------
    # staging
    # ------------------------------------------------------------------

    def _stage(self, sshc: SSHClient, remote_desc: str, staging: Path) -> Path:
        remote_desc = posixpath.normpath(remote_desc)
        remote_dir = posixpath.dirname(remote_desc)
        local_desc = staging / posixpath.basename(remote_desc)

        if not sshc.exists(remote_desc):
            raise TargetFailure(code=30, msg=f"Disk not found on source: {remote_desc}")

        sshc.scp_from(remote_desc, local_desc)

        # Text descriptors are small; a binary VMDK carries its own data.
        extents: List[str] = []
        if local_desc.stat().st_size <= _DESCRIPTOR_MAX_BYTES:
            extents = parse_extents(local_desc.read_text(encoding="utf-8", errors="replace"))
        for ext in extents:
            remote_ext = posixpath.normpath(posixpath.join(remote_dir, ext))
            if posixpath.dirname(remote_ext) != remote_dir:
                raise TargetFailure(code=31, msg=f"Extent escapes the VM directory; refusing: {ext}")
            sshc.scp_from(remote_ext, staging / posixpath.basename(remote_ext))
        self.logger.debug("Staged %s with %d extent(s)", remote_desc, len(extents))
        return local_desc

    def _cleanup_staging(self, staging: Path) -> None:
        try:
            for p in staging.iterdir():
                U.safe_unlink(p)
            staging.rmdir()
        except OSError as e:
            self.logger.warning("Cleanup of %s failed: %s", staging, e)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def convert(
        self,
        source_host: str,
        disk_source_path: str,
        destination_dir: Path,
        output_name: str,
        *,
        on_stage: Optional[Callable[[str], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> Path:
        """
        Stage one disk from `source_host` and convert it into
        destination_dir/<output_name>.qcow2. No output file on failure.
        """
        destination_dir = Path(destination_dir)
        U.ensure_dir(destination_dir)
        staging = destination_dir / f"staging-{U.token()}"
        U.ensure_dir(staging)
        out = destination_dir / f"{safe_output_name(output_name)}.qcow2"

        try:
            if on_stage:
                on_stage("downloading")
            sshc = self.ssh_factory(source_host)
            remote = datastore_to_vmfs_path(disk_source_path)
            try:
                local_desc = self._stage(sshc, remote, staging)
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
                raise TargetFailure(
                    code=30, msg=f"Download of {remote} from {source_host} failed", cause=e,
                    context={"source_host": source_host, "path": remote},
                ) from e
            if on_stage:
                on_stage("converting")
            return self.converter(self.logger, local_desc, out, progress_callback=on_progress)
        except ValueError as e:
            U.safe_unlink(out)
            raise TargetFailure(code=31, msg=str(e), cause=e) from e
        except Exception:
            U.safe_unlink(out)
            raise
        finally:
            self._cleanup_staging(staging)

    def upload(self, local_path: Path, target_host: str, target_storage_dir: str) -> str:
        """
        Copy local_path into target_storage_dir on target_host; returns the remote path.
        The local file is left in place either way.
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise TargetFailure(code=32, msg=f"Nothing to upload: {local_path} does not exist")
        remote = posixpath.join(target_storage_dir.rstrip("/") or "/", local_path.name)
        sshc = self.ssh_factory(target_host)
        try:
            sshc.scp_to(local_path, remote)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise TargetFailure(
                code=33, msg=f"Upload of {local_path.name} to {target_host} failed", cause=e,
                context={"target_host": target_host, "remote": remote},
            ) from e
        self.logger.info("Uploaded %s (%s) -> %s:%s", local_path.name, U.human_bytes(local_path.stat().st_size), target_host, remote)
        return remote

    def remove_remote(self, host: str, remote_path: str) -> None:
        """Best-effort delete of an uploaded file once Proxmox has imported it."""
        try:
            self.ssh_factory(host).rm_f(remote_path)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            self.logger.warning("Could not remove %s:%s: %s", host, remote_path, e)

    def download(self, source_host: str, remote_path: str, destination_dir: Path) -> Path:
        """Plain single-file copy from a host (used for image distribution)."""
        destination_dir = Path(destination_dir)
        U.ensure_dir(destination_dir)
        local = destination_dir / posixpath.basename(remote_path)
        sshc = self.ssh_factory(source_host)
        try:
            sshc.scp_from(remote_path, local)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            U.safe_unlink(local)
            raise TargetFailure(code=30, msg=f"Download of {remote_path} from {source_host} failed", cause=e) from e
        return local

    @staticmethod
    def discard(logger: logging.Logger, path: Optional[Path]) -> None:
        """Best-effort removal of a local artefact (file or directory)."""
        if path is None:
            return
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                U.safe_unlink(path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
