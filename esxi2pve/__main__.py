# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# esxi2pve/__main__.py
from __future__ import annotations

import logging
import sys
import traceback
from typing import Optional

from .cli import run
from .core.exceptions import Esxi2PveError, format_exception_for_cli


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Optional[logging.Logger], level: str, msg: str) -> None:
    """
    Log through the project logger once Log.setup() gave it handlers, else stderr.
    """
    if logger is None or not logger.handlers:
        _print_stderr(msg)
        return

    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def main() -> None:
    logger: Optional[logging.Logger] = logging.getLogger("esxi2pve")

    try:
        rc = run(sys.argv[1:])
    except Esxi2PveError as e:
        # Config and setup errors; job failures are reported through job state.
        _safe_log(logger, "error", f"💥 ERROR    {format_exception_for_cli(e, verbose=1)}")
        rc = e.code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = 1

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
