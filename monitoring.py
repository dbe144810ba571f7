"""
Error and performance monitors.

Both are plain service objects owned by the application (see main.create_app)
and cleaned up by the maintenance task started in the lifespan handler.
"""

import os
import platform
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Optional

from logging_config import get_logger

log = get_logger("monitoring")

ERROR_WINDOW_SECONDS = 5 * 60
ALERT_THRESHOLD = 10
ALERT_COOLDOWN_SECONDS = 15 * 60
ALERT_RETENTION_SECONDS = 24 * 60 * 60
SLOW_REQUEST_MS = 1000.0

CRITICAL_ERRORS = frozenset({
    "DATABASE_CONNECTION_FAILED",
    "PAYMENT_PROCESSING_FAILED",
    "AUTHENTICATION_SYSTEM_DOWN",
    "CRITICAL_SYSTEM_ERROR",
})


class ErrorMonitor:
    """Counts recent errors per code and raises log alerts on bursts."""

    def __init__(self, window: float = ERROR_WINDOW_SECONDS, clock: Callable[[], float] = time.time):
        self.window = window
        self._clock = clock
        self._errors: dict[str, list[float]] = defaultdict(list)
        self._last_alert: dict[str, float] = {}
        self._lock = threading.Lock()

    def track_error(self, code: str, status_code: int = 500) -> None:
        now = self._clock()
        cutoff = now - self.window
        with self._lock:
            recent = [ts for ts in self._errors[code] if ts > cutoff]
            recent.append(now)
            self._errors[code] = recent
            count = len(recent)
            threshold = 1 if code in CRITICAL_ERRORS else ALERT_THRESHOLD
            should_alert = count >= threshold and now - self._last_alert.get(code, 0.0) > ALERT_COOLDOWN_SECONDS
            if should_alert:
                self._last_alert[code] = now
        if should_alert:
            level = "CRITICAL" if code in CRITICAL_ERRORS else "WARNING"
            log.error(
                "%s: %s occurred %d times in the last %d minutes (last status %d)",
                level, code, count, int(self.window // 60), status_code,
            )

    def error_stats(self) -> dict[str, int]:
        cutoff = self._clock() - self.window
        with self._lock:
            stats = {code: sum(1 for ts in stamps if ts > cutoff) for code, stamps in self._errors.items()}
        return {code: count for code, count in stats.items() if count > 0}

    def health_status(self) -> dict:
        stats = self.error_stats()
        total = sum(stats.values())
        status, message = "healthy", "All systems operating normally"
        if total > 100:
            status, message = "critical", f"High error rate detected: {total} errors in last 5 minutes"
        elif total > 50:
            status, message = "warning", f"Elevated error rate: {total} errors in last 5 minutes"
        elif total > 20:
            status, message = "degraded", f"Moderate error rate: {total} errors in last 5 minutes"
        return {
            "status": status,
            "message": message,
            "errorCount": total,
            "errorBreakdown": stats,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def cleanup(self) -> None:
        now = self._clock()
        cutoff = now - self.window * 2
        with self._lock:
            for code in list(self._errors):
                recent = [ts for ts in self._errors[code] if ts > cutoff]
                if recent:
                    self._errors[code] = recent
                else:
                    del self._errors[code]
            for code, ts in list(self._last_alert.items()):
                if now - ts > ALERT_RETENTION_SECONDS:
                    del self._last_alert[code]


class PerformanceMonitor:
    """Aggregate request timings for the admin metrics endpoint."""

    def __init__(self, slow_threshold_ms: float = SLOW_REQUEST_MS, clock: Callable[[], float] = time.time):
        self.slow_threshold_ms = slow_threshold_ms
        self._clock = clock
        self.started_at = clock()
        self.request_count = 0
        self.slow_request_count = 0
        self.total_duration_ms = 0.0
        self.status_counts: dict[int, int] = defaultdict(int)
        self._lock = threading.Lock()

    def record(self, method: str, path: str, status_code: int, duration_ms: float) -> bool:
        """Record one request; returns True when it counts as slow."""
        slow = duration_ms > self.slow_threshold_ms
        with self._lock:
            self.request_count += 1
            self.total_duration_ms += duration_ms
            self.status_counts[status_code // 100 * 100] += 1
            if slow:
                self.slow_request_count += 1
        if slow:
            log.warning("Slow API request: %s %s took %.2fms (status %d)", method, path, duration_ms, status_code)
        return slow

    @property
    def average_response_ms(self) -> float:
        if not self.request_count:
            return 0.0
        return round(self.total_duration_ms / self.request_count, 2)

    def snapshot(self, extra: Optional[dict] = None) -> dict:
        with self._lock:
            data = {
                "responseTime": self.average_response_ms,
                "requestCount": self.request_count,
                "slowRequests": self.slow_request_count,
                "statusCounts": {str(k): v for k, v in sorted(self.status_counts.items())},
                "uptime": round(self._clock() - self.started_at, 2),
                "systemInfo": {
                    "pythonVersion": platform.python_version(),
                    "platform": platform.system().lower(),
                    "arch": platform.machine(),
                    "pid": os.getpid(),
                },
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        if extra:
            data.update(extra)
        return data
