"""
Event reporting side channel (NDJSON log and optional HTTP analytics).

Reporters are best-effort: `record` never raises and never blocks the
orchestration run on network I/O.
"""

import json
import logging
import platform
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from . import __version__

logger = logging.getLogger(__name__)


class EventTypes:
    STARTED = "STARTED"
    STEP = "STEP"
    NAMESERVERS = "NAMESERVERS"
    ERROR = "ERROR"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"


class EventReporter(ABC):
    """Sink for orchestration events."""

    @abstractmethod
    def record(self, event_type: str, data: Dict[str, Any]) -> None:
        pass


class NullReporter(EventReporter):
    def record(self, event_type: str, data: Dict[str, Any]) -> None:
        return None


class MultiReporter(EventReporter):
    """Fans an event out to several reporters."""

    def __init__(self, reporters: List[EventReporter]):
        self.reporters = list(reporters)

    def record(self, event_type: str, data: Dict[str, Any]) -> None:
        for reporter in self.reporters:
            reporter.record(event_type, data)


class NdjsonEventReporter(EventReporter):
    """Appends events to a logs.ndjson style file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def record(self, event_type: str, data: Dict[str, Any]) -> None:
        event = {
            "ts": datetime.now().isoformat(),
            "type": event_type,
            "data": data
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(event, default=str) + "\n")
                f.flush()
        except OSError as e:
            logger.warning(f"Could not write event to {self.path}: {e}")


class HttpEventReporter(EventReporter):
    """
    Posts events to an analytics endpoint from a background thread.

    Args:
        url: Endpoint receiving JSON events
        command: "deploy" or "destroy"
        timeout: Per-request timeout in seconds
    """

    def __init__(self, url: str, command: str, timeout: float = 5.0, session_id: Optional[str] = None):
        self.url = url
        self.command = command
        self.timeout = timeout
        self.session_id = session_id or str(uuid.uuid4())
        self._threads: List[threading.Thread] = []

    def _payload(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(data)
        options = payload.get("options")
        if isinstance(options, dict):
            payload["options"] = {k: v for k, v in options.items() if k != "csp"}

        payload.update({
            "event": event_type,
            "command": self.command,
            "session": self.session_id,
            "version": __version__,
            "python": platform.python_version(),
            "os": platform.system().lower(),
            "osVersion": platform.release(),
        })
        return payload

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"Dropping analytics event: {e}")

    def record(self, event_type: str, data: Dict[str, Any]) -> None:
        try:
            payload = self._payload(event_type, data)
            thread = threading.Thread(target=self._post, args=(payload,), daemon=True)
            thread.start()
            self._threads.append(thread)
        except (RuntimeError, TypeError) as e:
            logger.debug(f"Dropping analytics event: {e}")

    def flush(self, timeout: float = 2.0) -> None:
        """Give in-flight posts a moment to finish (used before process exit)."""
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]


def read_events(path: Path) -> List[Dict[str, Any]]:
    """
    Read all events from an NDJSON event log.

    Args:
        path: Event log path

    Returns:
        List of events (malformed lines skipped)
    """
    path = Path(path)
    if not path.exists():
        return []

    events = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue  # Skip malformed lines

    return events


def events_path(home: Path, base: str) -> Path:
    return Path(home) / base / "events.ndjson"
