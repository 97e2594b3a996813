"""
Persisted engine state: the event log, the last health report and the
per-pool period markers used for archive idempotence.
"""
import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import HealthReport
from ..storage import naming

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


class EventLog:
    """Append-only JSON lines log of every creation and deletion."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def record(self, timestamp: datetime, pool_id: str, unit_id: str, action: str,
               outcome: str, detail: Optional[str] = None, **extra) -> Dict[str, Any]:
        event = {
            "timestamp": timestamp.isoformat(),
            "pool": pool_id,
            "unit": unit_id,
            "action": action,
            "outcome": outcome,
        }
        if detail:
            event["detail"] = detail
        event.update(extra)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.error(f"Could not write event log {self.path}: {e}")
        return event

    def read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        events = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt event log line in {self.path}")
        return events


class ReportStore:
    """Keeps the last health report so it can be shown without side effects."""

    def __init__(self, path: Path):
        self.path = path

    def save(self, report: HealthReport) -> None:
        try:
            _atomic_write(self.path, json.dumps(report.to_dict(), indent=2))
        except OSError as e:
            logger.error(f"Could not save report to {self.path}: {e}")

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error(f"Failed to load last report from {self.path}")
            return None


class PeriodMarker:
    """Records the last completed period key in a pool's root."""

    def __init__(self, pool_root: Path):
        self.path = pool_root / naming.PERIOD_MARKER

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning(f"Ignoring unreadable period marker {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    def last(self, period: str) -> Optional[str]:
        return self._read().get(period)

    def update(self, period: str, key: str) -> None:
        data = self._read()
        data[period] = key
        _atomic_write(self.path, json.dumps(data))
