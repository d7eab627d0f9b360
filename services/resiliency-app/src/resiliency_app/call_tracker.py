"""Process-wide registry of attempts observed per scenario id."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from resiliency_app.models import AttemptRecord


@dataclass
class _AttemptLog:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: list[AttemptRecord] = field(default_factory=list)


@dataclass
class CallTracker:
    """
    Append-only attempt history keyed by scenario id.

    Each id owns its own lock, so appends for different ids never wait on
    each other. The registry lock is only taken to create the log for an id
    seen for the first time and to copy the key set for a snapshot.
    """

    _logs: dict[str, _AttemptLog] = field(default_factory=dict)
    _registry_lock: threading.Lock = field(default_factory=threading.Lock)

    def _log_for(self, scenario_id: str) -> _AttemptLog:
        log = self._logs.get(scenario_id)
        if log is None:
            with self._registry_lock:
                log = self._logs.setdefault(scenario_id, _AttemptLog())
        return log

    def record_attempt(self, scenario_id: str) -> int:
        """Append an attempt for ``scenario_id`` and return its zero-based ordinal."""
        log = self._log_for(scenario_id)
        with log.lock:
            sequence_number = len(log.records)
            log.records.append(
                AttemptRecord(
                    sequence_number=sequence_number,
                    observed_at=datetime.now(UTC),
                )
            )
        return sequence_number

    def attempts(self, scenario_id: str) -> list[AttemptRecord]:
        log = self._logs.get(scenario_id)
        if log is None:
            return []
        with log.lock:
            return list(log.records)

    def snapshot(self) -> dict[str, list[AttemptRecord]]:
        with self._registry_lock:
            logs = list(self._logs.items())

        result: dict[str, list[AttemptRecord]] = {}
        for scenario_id, log in logs:
            with log.lock:
                result[scenario_id] = list(log.records)
        return result
