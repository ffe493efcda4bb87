from __future__ import annotations

import errno
import logging
import os
import threading
import time
from pathlib import Path
from typing import IO, Protocol
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from ytlikes.app.models.likes import PollRunSummary
from ytlikes.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("yt_likes.scheduler")

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


class PollRunner(Protocol):
    def run(self) -> PollRunSummary:
        ...


class SchedulerService:
    """Background thread running one poll cycle per interval.

    With ``lock_path`` set, only the process holding the file lock polls, so
    several API workers sharing a data directory do not all run cycles.
    """

    def __init__(
        self,
        runner: PollRunner,
        poll_interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._runner = runner
        self._poll_interval_seconds = max(1, poll_interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._lock_path = lock_path
        self._lock_file: IO[str] | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        if not self._acquire_process_lock():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="yt-likes-scheduler",
            daemon=True,
        )
        self._thread.start()
        LOGGER.info("scheduler started interval_seconds=%s", self._poll_interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None
        self._release_process_lock()

    def run_tick(self) -> PollRunSummary | None:
        tick_id = uuid4().hex
        tokens = bind_contextvars(poll_tick_id=tick_id)
        started_at = time.perf_counter()
        self._telemetry.emit("scheduler.tick.start", tick_id=tick_id)
        try:
            summary = self._runner.run()
        except Exception as exc:
            LOGGER.error("scheduler poll tick failed", exc_info=True)
            self._telemetry.emit(
                "scheduler.tick.error",
                tick_id=tick_id,
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            return None
        else:
            self._telemetry.emit(
                "scheduler.tick.finish",
                tick_id=tick_id,
                duration_ms=_elapsed_ms(started_at),
                users_checked=summary.users_checked,
                new_likes=summary.total_new_likes,
                notifications_sent=summary.notifications_sent,
            )
            return summary
        finally:
            reset_contextvars(**tokens)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            tick_started = time.monotonic()
            self.run_tick()
            remaining = self._poll_interval_seconds - (time.monotonic() - tick_started)
            self._stop_event.wait(max(0.0, remaining))

    def _acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True
        if fcntl is None:
            LOGGER.warning("scheduler process lock unavailable on this platform; starting anyway")
            return True

        lock_path = self._lock_path
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = lock_path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            lock_file.close()
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info("scheduler start skipped; lock held elsewhere path=%s", lock_path)
                return False
            LOGGER.warning(
                "scheduler lock acquisition failed path=%s; starting anyway",
                lock_path,
                exc_info=True,
            )
            return True

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        self._lock_file = lock_file
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            return
        self._lock_file = None
        try:
            if fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("scheduler lock release failed path=%s", self._lock_path, exc_info=True)
        finally:
            lock_file.close()


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)
