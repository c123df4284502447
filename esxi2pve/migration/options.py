# SPDX-License-Identifier: LGPL-3.0-or-later
# esxi2pve/migration/options.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..core.exceptions import InvalidInput

MIGRATION_KIND = "migration"


class Stage(Enum):
    DISCOVERING = "discovering"
    DOWNLOADING = "downloading"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    CREATING = "creating"
    COMPLETED = "completed"
    FAILED = "failed"


class Strategy(Enum):
    FULL_PIPELINE = "full_pipeline"
    NATIVE_FAST_PATH = "native_fast_path"

    @classmethod
    def parse(cls, value: Any) -> Optional["Strategy"]:
        if value is None or value == "" or value == "auto":
            return None
        if isinstance(value, Strategy):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            raise InvalidInput(
                code=2,
                msg=f"Unknown strategy {value!r} (expected one of: {', '.join(s.value for s in cls)})",
            ) from None


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MigrationOptions:
    cluster_id: str
    node: str
    storage: str
    bridge: str = "vmbr0"
    start_after_import: bool = False
    strategy: Optional[Strategy] = None
    scratch_dir: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "MigrationOptions":
        missing = [k for k in ("cluster_id", "node", "storage") if not str(d.get(k) or "").strip()]
        if missing:
            raise InvalidInput(code=2, msg=f"Missing migration option(s): {', '.join(missing)}")
        return cls(
            cluster_id=str(d["cluster_id"]).strip(),
            node=str(d["node"]).strip(),
            storage=str(d["storage"]).strip(),
            bridge=str(d.get("bridge") or "vmbr0").strip(),
            start_after_import=_as_bool(d.get("start_after_import")),
            strategy=Strategy.parse(d.get("strategy")),
            scratch_dir=(str(d["scratch_dir"]) if d.get("scratch_dir") else None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "node": self.node,
            "storage": self.storage,
            "bridge": self.bridge,
            "start_after_import": self.start_after_import,
            "strategy": self.strategy.value if self.strategy else None,
            "scratch_dir": self.scratch_dir,
        }
