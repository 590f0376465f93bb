"""
Hang detection for long-running migrations.

The WatchdogMonitor runs a daemon thread that checks, independently of the
batch loop, how long ago the migration last reported progress. When the
silence exceeds the timeout it raises a single alert: diagnostics go to an
append-only log file (readable even while a progress display owns the
console), to the logging system, and to registered alert handlers. The alert
re-arms on the next heartbeat.

The monitor never raises into its caller. File, diagnostic and handler
failures are logged and swallowed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class WatchdogAlert:
    """
    Diagnostics captured when a hang is detected.

    Attributes:
        last_context: Context string of the last heartbeat.
        elapsed_seconds: Seconds since the last heartbeat.
        last_heartbeat_at: Wall-clock time of the last heartbeat (UTC).
        memory_mb: Resident memory of the process in MiB, if available.
        thread_count: Thread count of the process, if available.
    """

    last_context: str
    elapsed_seconds: float
    last_heartbeat_at: datetime
    memory_mb: float | None = None
    thread_count: int | None = None

    @property
    def elapsed_minutes(self) -> float:
        return self.elapsed_seconds / 60.0


AlertHandler = Callable[[WatchdogAlert], None]


class WatchdogMonitor:
    """
    Detects stalls by tracking the time since the last heartbeat.

    Example:
        >>> watchdog = WatchdogMonitor(timeout_seconds=300, log_path=Path("_watchdog.log"))
        >>> watchdog.add_alert_handler(lambda alert: print(alert.last_context))
        >>> watchdog.start("Starting migration")
        >>> watchdog.heartbeat("Table: users, Offset: 25000/100000")
        >>> watchdog.stop()

    Args:
        timeout_seconds: Silence that counts as a hang (default 300).
        poll_interval_seconds: Seconds between checks (default 30).
        log_path: Append-only watchdog log file; None disables file output.
        verbose: Also log every heartbeat to the log file.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 30.0,
        log_path: Path | None = None,
        *,
        verbose: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        if poll_interval_seconds <= 0:
            raise ValueError(
                f"poll_interval_seconds must be positive, got {poll_interval_seconds}"
            )

        self._timeout = timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._log_path = log_path
        self._verbose = verbose
        self._clock = clock

        self._lock = threading.Lock()
        self._last_beat = clock()
        self._last_beat_at = datetime.now(UTC)
        self._last_context = ""
        self._running = False
        self._alert_raised = False

        self._handlers: list[AlertHandler] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def alert_outstanding(self) -> bool:
        """Check if an alert was raised and no heartbeat has arrived since."""
        with self._lock:
            return self._alert_raised

    def add_alert_handler(self, handler: AlertHandler) -> None:
        """
        Register a callback invoked once per detected hang.

        Handlers run on the watchdog thread and must be thread-safe.
        """
        self._handlers.append(handler)

    def start(self, context: str) -> None:
        """Start monitoring, treating now as the first heartbeat."""
        with self._lock:
            self._last_beat = self._clock()
            self._last_beat_at = datetime.now(UTC)
            self._last_context = context
            self._running = True
            self._alert_raised = False

        if self._thread is None or not self._thread.is_alive():
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="tablemigrator-watchdog",
                daemon=True,
            )
            self._thread.start()

        self._log(f"Watchdog started with {self._timeout / 60:g} minute timeout")
        logger.debug("Watchdog started: %s", context)

    def heartbeat(self, context: str) -> None:
        """Record activity and re-arm the alert."""
        with self._lock:
            self._last_beat = self._clock()
            self._last_beat_at = datetime.now(UTC)
            self._last_context = context
            self._alert_raised = False

        if self._verbose:
            self._log(f"Heartbeat: {context}")

    def stop(self) -> None:
        """Stop monitoring. Safe to call more than once."""
        with self._lock:
            was_running = self._running
            self._running = False

        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._thread = None

        if was_running:
            self._log("Watchdog stopped")
            logger.debug("Watchdog stopped")

    def check(self) -> WatchdogAlert | None:
        """
        Run one poll tick.

        Returns:
            The alert raised on this tick, or None. At most one alert is
            raised per silence; the next heartbeat re-arms it.
        """
        with self._lock:
            if not self._running:
                return None
            elapsed = self._clock() - self._last_beat
            if elapsed <= self._timeout or self._alert_raised:
                return None
            self._alert_raised = True
            context = self._last_context
            last_beat_at = self._last_beat_at

        memory_mb, thread_count = self._diagnostics()
        alert = WatchdogAlert(
            last_context=context,
            elapsed_seconds=elapsed,
            last_heartbeat_at=last_beat_at,
            memory_mb=memory_mb,
            thread_count=thread_count,
        )
        self._raise_alert(alert)
        return alert

    def _run(self) -> None:
        while not self._stop_event.wait(self._poll_interval):
            try:
                self.check()
            except Exception:
                logger.exception("Watchdog check failed")

    def _raise_alert(self, alert: WatchdogAlert) -> None:
        memory = f"{alert.memory_mb:.0f} MB" if alert.memory_mb is not None else "unavailable"
        threads = str(alert.thread_count) if alert.thread_count is not None else "unavailable"

        self._log("=== WATCHDOG ALERT ===")
        self._log(f"No activity for: {alert.elapsed_minutes:.1f} minutes")
        self._log(f"Last activity: {alert.last_heartbeat_at:%H:%M:%S} UTC")
        self._log(f"Context: {alert.last_context}")
        self._log(f"Memory: {memory}")
        self._log(f"Threads: {threads}")
        self._log("The migration appears to be stuck.")
        self._log("======================")

        logger.error(
            "No migration activity for %.1f minutes (last: %s). Memory: %s, threads: %s",
            alert.elapsed_minutes,
            alert.last_context,
            memory,
            threads,
            extra={
                "last_context": alert.last_context,
                "elapsed_seconds": alert.elapsed_seconds,
            },
        )

        for handler in list(self._handlers):
            try:
                handler(alert)
            except Exception:
                logger.exception("Watchdog alert handler %r failed", handler)

    @staticmethod
    def _diagnostics() -> tuple[float | None, int | None]:
        try:
            process = psutil.Process()
            return process.memory_info().rss / 1024 / 1024, process.num_threads()
        except (psutil.Error, OSError) as e:
            logger.debug("Could not collect process diagnostics: %s", e)
            return None, None

    def _log(self, message: str) -> None:
        if self._log_path is None:
            return
        line = f"[{datetime.now(UTC):{LOG_TIMESTAMP_FORMAT}}] {message}\n"
        try:
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.debug("Could not write watchdog log %s: %s", self._log_path, e)


__all__ = [
    "LOG_TIMESTAMP_FORMAT",
    "WatchdogAlert",
    "AlertHandler",
    "WatchdogMonitor",
]
