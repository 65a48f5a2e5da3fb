"""Rule engine counters."""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Any


_REQUIRED_COUNTERS = (
    "rules_processed_total",
    "rules_from_cache_total",
    "rules_skipped_total",
    "rule_errors_total",
    "checks_triggered_total",
    "runs_evaluated_total",
)


@dataclass
class EngineMetrics:
    counters: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        for key in _REQUIRED_COUNTERS:
            self.counters.setdefault(key, 0)

    def record_processed(self) -> None:
        self._inc("rules_processed_total")

    def record_cache_hit(self) -> None:
        self._inc("rules_from_cache_total")

    def record_skipped(self) -> None:
        self._inc("rules_skipped_total")

    def record_error(self) -> None:
        self._inc("rule_errors_total")

    def record_check_triggered(self) -> None:
        self._inc("checks_triggered_total")

    def record_run_evaluated(self) -> None:
        self._inc("runs_evaluated_total")

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {"metrics": dict(self.counters)}

    def _inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[key] = self.counters.get(key, 0) + amount
