# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/core/utils.py
from __future__ import annotations

import datetime as _dt
import logging
import secrets
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union


class U:
    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def which(prog: str) -> Optional[str]:
        from shutil import which as _which
        return _which(prog)

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    @staticmethod
    def utcnow_iso() -> str:
        return _dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="seconds")

    @staticmethod
    def token(nbytes: int = 4) -> str:
        """Short random hex token for unique scratch names and ids."""
        return secrets.token_hex(nbytes)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        x = float(n)
        for unit in ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]:
            if x < 1024 or unit == "PiB":
                return f"{x:.2f} {unit}" if unit != "B" else f"{int(x)} {unit}"
            x /= 1024
        return f"{n} B"

    @staticmethod
    def _pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        check: bool = True,
        capture: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        cwd: Optional[Union[str, Path]] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command.

        - capture=True uses subprocess.run(capture_output=True, text=True)
        - failures are logged with stdout/stderr and re-raised unchanged
        """
        pretty = U._pretty_cmd(cmd)
        logger.debug("Running: %s", pretty)

        try:
            return subprocess.run(
                cmd,
                check=check,
                capture_output=capture,
                text=True,
                env=env,
                timeout=timeout,
                cwd=str(cwd) if cwd is not None else None,
                input=input_text,
            )

        except subprocess.CalledProcessError as e:
            stdout = (e.stdout or e.output or "").strip()
            stderr = (e.stderr or "").strip()
            if stdout or stderr:
                logger.error(
                    "Command failed: %s%s%s",
                    pretty,
                    f"\nstdout:\n{stdout}" if stdout else "",
                    f"\nstderr:\n{stderr}" if stderr else "",
                )
            else:
                logger.error("Command failed: %s (no output)", pretty)
            raise

        except subprocess.TimeoutExpired:
            logger.error("Command timed out: %s (timeout=%ss)", pretty, timeout)
            raise

        except OSError as e:
            logger.error("Command error: %s (%s)", pretty, e)
            raise

    @staticmethod
    def safe_unlink(p: Path, *, missing_ok: bool = True) -> None:
        try:
            p.unlink()
        except FileNotFoundError:
            if not missing_ok:
                raise

