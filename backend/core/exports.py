from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path


def _base_root() -> Path:
    env_root = os.getenv("EXPORTS_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "exports"


def ensure_exports_root() -> Path:
    """Ensure the export folder exists and return it."""

    root = _base_root()
    root.mkdir(parents=True, exist_ok=True)
    return root


def export_path(stem: str, moment: datetime, suffix: str = ".xlsx") -> Path:
    """Timestamped target path for a generated spreadsheet."""

    safe_stem = Path(stem).name or "export"
    return ensure_exports_root() / f"{safe_stem}_{moment.strftime('%Y%m%d_%H%M%S')}{suffix}"
