from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ytlikes.app.models.likes import LikedItem, PollCycleResult, PollRunSummary, User
from ytlikes.app.repositories.common import utc_now
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.baseline_tracker import BaselineTracker
from ytlikes.app.services.notification_dispatcher import NotificationDispatcher
from ytlikes.app.services.work_ledger import WorkRecordLedger
from ytlikes.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("yt_likes.poll")

MAX_DETECTION_WORKERS = 10

UserOutcomeKind = Literal["ok", "failed", "skipped"]


class PollCycleError(Exception):
    """The cycle could not run at all (store unavailable, user scan failed)."""


@dataclass(frozen=True)
class _UserOutcome:
    user_id: str
    kind: UserOutcomeKind
    recorded: tuple[LikedItem, ...] = ()


class PollOrchestrator:
    def __init__(
        self,
        *,
        user_repository: UserRepository,
        baseline_tracker: BaselineTracker,
        ledger: WorkRecordLedger,
        dispatcher: NotificationDispatcher,
        max_workers: int = 1,
        cycle_deadline_seconds: float | None = 240.0,
        telemetry: TelemetryClient | None = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._user_repository = user_repository
        self._baseline_tracker = baseline_tracker
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._max_workers = min(max(1, max_workers), MAX_DETECTION_WORKERS)
        self._cycle_deadline_seconds = cycle_deadline_seconds
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._clock = clock
        self._monotonic = monotonic

    def run_cycle(self) -> PollCycleResult:
        started_at = self._monotonic()
        self._telemetry.emit("poll.cycle.start", max_workers=self._max_workers)

        try:
            users = self._user_repository.list_active_users()
        except Exception as exc:
            LOGGER.error("poll cycle could not list active users", exc_info=True)
            self._telemetry.emit("poll.cycle.error", error_type=type(exc).__name__)
            raise PollCycleError("Unable to list active users") from exc

        LOGGER.info("poll cycle started users=%s workers=%s", len(users), self._max_workers)

        if self._max_workers == 1 or len(users) <= 1:
            outcomes = [self._process_user(user, started_at) for user in users]
        else:
            with ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="yt-likes-poll",
            ) as executor:
                futures = [
                    executor.submit(self._process_user, user, started_at) for user in users
                ]
                outcomes = [future.result() for future in futures]

        new_likes_by_user: dict[str, list[LikedItem]] = {}
        failed_user_ids: list[str] = []
        skipped_user_ids: list[str] = []
        for outcome in outcomes:
            if outcome.kind == "failed":
                failed_user_ids.append(outcome.user_id)
            elif outcome.kind == "skipped":
                skipped_user_ids.append(outcome.user_id)
            elif outcome.recorded:
                new_likes_by_user[outcome.user_id] = list(outcome.recorded)

        result = PollCycleResult(
            users_checked=len(users),
            total_new_likes=sum(len(items) for items in new_likes_by_user.values()),
            new_likes_by_user=new_likes_by_user,
            failed_user_ids=tuple(failed_user_ids),
            skipped_user_ids=tuple(skipped_user_ids),
            deadline_exceeded=bool(skipped_user_ids),
        )

        duration_ms = int((self._monotonic() - started_at) * 1000)
        LOGGER.info(
            "poll cycle finished users=%s new_likes=%s failed=%s skipped=%s duration_ms=%s",
            result.users_checked,
            result.total_new_likes,
            len(result.failed_user_ids),
            len(result.skipped_user_ids),
            duration_ms,
        )
        if result.deadline_exceeded:
            LOGGER.warning(
                "poll cycle deadline exceeded deadline_seconds=%s skipped=%s",
                self._cycle_deadline_seconds,
                len(result.skipped_user_ids),
            )
        self._telemetry.emit(
            "poll.cycle.finish",
            users_checked=result.users_checked,
            new_likes=result.total_new_likes,
            failed=len(result.failed_user_ids),
            skipped=len(result.skipped_user_ids),
            deadline_exceeded=result.deadline_exceeded,
            duration_ms=duration_ms,
        )
        return result

    def run(self) -> PollRunSummary:
        result = self.run_cycle()
        dispatch_results = self._dispatcher.send_batches(result.new_likes_by_user)
        sent = sum(1 for dispatch in dispatch_results if dispatch.success)
        failed = len(dispatch_results) - sent
        if dispatch_results:
            LOGGER.info("poll notifications dispatched sent=%s failed=%s", sent, failed)
        return PollRunSummary(
            users_checked=result.users_checked,
            total_new_likes=result.total_new_likes,
            notifications_sent=sent,
            notifications_failed=failed,
        )

    def _process_user(self, user: User, started_at: float) -> _UserOutcome:
        if self._deadline_passed(started_at):
            return _UserOutcome(user_id=user.user_id, kind="skipped")

        try:
            delta = self._baseline_tracker.check_user(user)
            if not delta:
                return _UserOutcome(user_id=user.user_id, kind="ok")
            recorded = self._ledger.record_if_new(user.user_id, delta)
            self._user_repository.update_sync_timestamp(user.user_id, self._clock())
        except Exception as exc:
            LOGGER.error("poll user processing failed user=%s", user.label, exc_info=True)
            self._telemetry.emit(
                "poll.user.error",
                user_id=user.user_id,
                error_type=type(exc).__name__,
            )
            return _UserOutcome(user_id=user.user_id, kind="failed")

        if recorded:
            LOGGER.info("poll new likes recorded user=%s count=%s", user.label, len(recorded))
        return _UserOutcome(user_id=user.user_id, kind="ok", recorded=tuple(recorded))

    def _deadline_passed(self, started_at: float) -> bool:
        if self._cycle_deadline_seconds is None:
            return False
        return self._monotonic() - started_at >= self._cycle_deadline_seconds
