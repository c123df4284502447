# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/core/__init__.py
from .exceptions import (
    AlreadyTerminal,
    ConfigError,
    ConversionToolFailure,
    Esxi2PveError,
    Fatal,
    InvalidInput,
    NotFound,
    RemoteApiError,
    SourceUnreachable,
    TargetFailure,
)
from .logger import Log
from .utils import U

__all__ = [
    "AlreadyTerminal",
    "ConfigError",
    "ConversionToolFailure",
    "Esxi2PveError",
    "Fatal",
    "InvalidInput",
    "Log",
    "NotFound",
    "RemoteApiError",
    "SourceUnreachable",
    "TargetFailure",
    "U",
]
