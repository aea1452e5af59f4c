"""Append-only, user-facing audit trail of a Run."""

import logging
from typing import Callable, List

from viraltube.domain.models import LogEntry, Severity

logger = logging.getLogger("viraltube.events")

_LEVELS = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.THINKING: logging.DEBUG,
}


class EventLog:
    """
    Event-sourced log with typed severity.
    Entries are never edited; observers get a replay of what exists, then every new entry.
    """

    def __init__(self) -> None:
        self._entries: List[LogEntry] = []
        self._observers: List[Callable[[LogEntry], None]] = []

    def append(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        entry = LogEntry(message=message, severity=Severity(severity))
        self._entries.append(entry)
        logger.log(_LEVELS.get(entry.severity, logging.INFO), "%s", message)
        for observer in list(self._observers):
            self._notify(observer, entry)
        return entry

    @staticmethod
    def _notify(observer: Callable[[LogEntry], None], entry: LogEntry) -> None:
        # Observers only watch; a failing one never reaches the stage that logged
        try:
            observer(entry)
        except Exception:
            logger.exception("Event log observer failed")

    def info(self, message: str) -> LogEntry:
        return self.append(message, Severity.INFO)

    def success(self, message: str) -> LogEntry:
        return self.append(message, Severity.SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.append(message, Severity.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.append(message, Severity.ERROR)

    def thinking(self, message: str) -> LogEntry:
        return self.append(message, Severity.THINKING)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def subscribe(self, observer: Callable[[LogEntry], None], replay: bool = True) -> Callable[[], None]:
        if replay:
            for entry in list(self._entries):
                self._notify(observer, entry)
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def reset(self) -> None:
        """Start a fresh trail for a new Run (old entries are dropped, never edited)."""
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
