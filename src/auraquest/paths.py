from __future__ import annotations

import os
from pathlib import Path


def data_home() -> Path:
    configured = os.environ.get("AURAQUEST_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".auraquest"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    store = base / "store"
    locks = base / "locks"
    logs = base / "logs"
    for path in (base, store, locks, logs):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "store": store, "locks": locks, "logs": logs}
