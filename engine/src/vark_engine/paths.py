from __future__ import annotations

import os
from pathlib import Path


def discover_repo_root(start: Path | None = None) -> Path:
    start_path = (start or Path.cwd()).resolve()
    for candidate in [start_path, *start_path.parents]:
        if (candidate / "config" / "assessment.yaml").is_file():
            return candidate
    raise FileNotFoundError("Could not find repository root with /config/assessment.yaml.")


def vark_home() -> Path:
    configured = os.environ.get("VARK_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".vark"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    state = base / "state"
    telemetry = base / "telemetry"
    for path in (base, state, telemetry):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "state": state, "telemetry": telemetry}
