"""Persist and inspect JSON records of workflow runs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional

__all__ = ["RunLogEntry", "latest_run_log", "load_run_log", "write_run_record"]

LOGGER = logging.getLogger(__name__)

RUN_LOG_SUFFIX = ".json"


@dataclass(slots=True)
class RunLogEntry:
    """In-memory representation of a stored run record."""

    path: Path
    payload: Mapping[str, Any]

    @property
    def command(self) -> str:
        return str(self.payload.get("command") or "")

    @property
    def stage(self) -> str:
        return str(self.payload.get("stage") or "")

    @property
    def failure(self) -> Optional[Mapping[str, Any]]:
        value = self.payload.get("failure")
        if isinstance(value, Mapping):
            return value
        return None

    @property
    def warnings(self) -> List[str]:
        value = self.payload.get("warnings")
        if isinstance(value, list):
            return [str(item) for item in value]
        return []

    @property
    def merge_request_url(self) -> Optional[str]:
        mr = self.payload.get("merge_request")
        if isinstance(mr, Mapping) and mr.get("web_url"):
            return str(mr["web_url"])
        return None


def write_run_record(logs_root: Path, payload: Mapping[str, Any], *, command: str) -> Optional[Path]:
    """Write ``payload`` as a timestamped JSON file; failures are logged, not raised."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    path = logs_root / f"{timestamp}__{command}{RUN_LOG_SUFFIX}"
    record = {"command": command, "written_at": timestamp, **payload}
    try:
        logs_root.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(record, handle, indent=2, sort_keys=True, default=str)
    except OSError as error:
        LOGGER.warning("Unable to write run record to %s: %s", path, error)
        return None
    return path


def load_run_log(path: Path | str) -> RunLogEntry:
    """Load a stored run record from disk."""
    log_path = Path(path).resolve()
    with log_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    return RunLogEntry(path=log_path, payload=payload)


def latest_run_log(logs_root: Path) -> Optional[RunLogEntry]:
    """Return the most recent run record, or ``None`` when there is none."""
    if not logs_root.is_dir():
        return None
    candidates = sorted(logs_root.glob(f"*{RUN_LOG_SUFFIX}"))
    if not candidates:
        return None
    return load_run_log(candidates[-1])
