# app/workflow_logger.py
from __future__ import annotations

from datetime import datetime, timezone
import json
import os
from pathlib import Path
from typing import Optional

_LOG_PATH: Path | None = None


# One file per process; first call creates $WORKFLOW_LOG_DIR/run_YYYYMMDDTHHMMSSZ.log
def _get_log_path() -> Path:
    global _LOG_PATH
    if _LOG_PATH is None:
        log_dir = Path(os.getenv("WORKFLOW_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        started = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        _LOG_PATH = log_dir / f"run_{started}.log"
    return _LOG_PATH


def reset_log_path() -> None:
    """Next event opens a new file under the current WORKFLOW_LOG_DIR."""
    global _LOG_PATH
    _LOG_PATH = None


def format_actor(role: str, actor_id: Optional[str] = None) -> str:
    return f"{role}:{actor_id}" if actor_id else role


def log_event(
    *,
    case_id: str,
    status: str | None,
    actor: str,
    event: str,
    control_number: str | None = None,
    extra: dict | None = None,
) -> None:
    """
    Audit line for one case transition:
    <ts> | case_id=... | control=... | status=... | actor=role:id | Event | json={...}
    """
    ts = datetime.now(timezone.utc).isoformat(timespec="seconds")
    line = (
        f"{ts} | case_id={case_id} | control={control_number or '-'} | status={status} | "
        f"actor={actor} | {event} | json={json.dumps(extra or {}, ensure_ascii=False, sort_keys=True, default=str)}"
    )

    print(line, flush=True)
    with _get_log_path().open("a", encoding="utf-8") as f:
        f.write(line + "\n")
