# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/disk/qemu.py
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from ..core.exceptions import ConversionToolFailure
from ..core.utils import U


class QemuImg:
    """
    qemu-img wrapper:
      - atomic output (.part -> rename), never leaves a partial image behind
      - flat VMDK descriptor preference
      - stderr tail in the raised error
      - best-effort percent parsing of `-p` output for progress callbacks
    """

    _RE_PAREN = re.compile(r"\((\d+(?:\.\d+)?)/100%\)")

    @staticmethod
    def available() -> bool:
        return U.which("qemu-img") is not None

    @staticmethod
    def build_convert_cmd(src: Path, dst: Path, *, in_format: str = "vmdk", out_format: str = "qcow2") -> List[str]:
        return ["qemu-img", "convert", "-p", "-f", in_format, "-O", out_format, str(src), str(dst)]

    @staticmethod
    def last_percent(text: str) -> Optional[float]:
        hits = QemuImg._RE_PAREN.findall(text or "")
        if not hits:
            return None
        try:
            return float(hits[-1])
        except ValueError:
            return None

    @staticmethod
    def _prefer_descriptor_for_flat(logger: logging.Logger, src: Path) -> Path:
        s = str(src)
        if s.endswith("-flat.vmdk"):
            descriptor = src.with_name(src.name.replace("-flat.vmdk", ".vmdk"))
            if descriptor.is_file():
                logger.info("Detected flat VMDK; using descriptor: %s", descriptor)
                return descriptor
        return src

    @staticmethod
    def convert(
        logger: logging.Logger,
        src: Path,
        dst: Path,
        *,
        in_format: str = "vmdk",
        out_format: str = "qcow2",
        progress_callback: Optional[Callable[[float], None]] = None,
        timeout: Optional[int] = None,
        max_stderr_tail: int = 40,
    ) -> Path:
        """
        Convert src into dst. Raises ConversionToolFailure; dst never exists on failure.
        """
        if not QemuImg.available():
            raise ConversionToolFailure(code=40, msg="qemu-img not found in PATH")

        src = QemuImg._prefer_descriptor_for_flat(logger, Path(src))
        dst = Path(dst)
        if not src.is_file():
            raise ConversionToolFailure(code=41, msg=f"Source image file not found: {src}")

        U.ensure_dir(dst.parent)
        tmp = dst.with_suffix(dst.suffix + ".part")
        U.safe_unlink(tmp)

        cmd = QemuImg.build_convert_cmd(src, tmp, in_format=in_format, out_format=out_format)
        logger.info("Converting: %s -> %s (%s -> %s)", src, dst, in_format, out_format)

        try:
            cp = U.run_cmd(logger, cmd, check=False, capture=True, timeout=timeout)
        except (subprocess.TimeoutExpired, OSError) as e:
            U.safe_unlink(tmp)
            raise ConversionToolFailure(
                code=42, msg=f"qemu-img convert did not complete: {e}", cause=e, context={"src": str(src)}
            ) from e

        if cp.returncode != 0:
            U.safe_unlink(tmp)
            tail = "\n".join((cp.stderr or "").strip().splitlines()[-max_stderr_tail:])
            logger.error("qemu-img convert failed (rc=%s)%s", cp.returncode, f"\n{tail}" if tail else "")
            raise ConversionToolFailure(
                code=42,
                msg=f"qemu-img convert failed (rc={cp.returncode}): {tail.splitlines()[-1] if tail else 'no output'}",
                context={"src": str(src), "dst": str(dst)},
            )

        tmp.replace(dst)
        if progress_callback is not None:
            pct = QemuImg.last_percent(cp.stdout or "")
            try:
                progress_callback(1.0 if pct is None else pct / 100.0)
            except Exception as e:
                logger.debug("progress callback failed: %s", e)
        logger.info("Converted image ready: %s", dst)
        return dst
