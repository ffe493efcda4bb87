from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from ytlikes.app.models.likes import DispatchResult, LikedItem
from ytlikes.app.repositories.common import utc_now_iso
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.push_transport import PushTransport, is_invalid_token_error
from ytlikes.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("yt_likes.push")

NEW_LIKES_MESSAGE_TYPE = "new_likes"
NEW_LIKES_TITLE = "New music available!"
MAX_TITLES_IN_PAYLOAD = 10
TEST_NOTIFICATION = ("YT Likes Listener test", "The backend is working!")
MISSING_PUSH_TOKEN_ERROR = "User or push token not found"


@dataclass(frozen=True)
class PushMessage:
    token: str
    data: dict[str, str]
    notification: tuple[str, str] | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class PushStats:
    total_sent: int
    successful_sent: int
    failed_sent: int
    active_tokens: int


def build_new_likes_message(token: str, items: Sequence[LikedItem]) -> PushMessage:
    """One data-only message for the whole batch, so the app can start work silently."""
    video_ids = [item.video_id for item in items]
    if len(items) == 1:
        body = f'"{items[0].title}" is ready to download'
    else:
        body = f"{len(items)} new tracks to download"
    return PushMessage(
        token=token,
        data={
            "type": NEW_LIKES_MESSAGE_TYPE,
            "videoIds": json.dumps(video_ids),
            "titles": json.dumps([item.title for item in items[:MAX_TITLES_IN_PAYLOAD]]),
            "count": str(len(items)),
            "title": NEW_LIKES_TITLE,
            "body": body,
        },
    )


class NotificationDispatcher:
    def __init__(
        self,
        user_repository: UserRepository,
        transport: PushTransport,
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        inter_send_delay_seconds: float = 0.1,
        cleanup_delay_seconds: float = 0.2,
        telemetry: TelemetryClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._user_repository = user_repository
        self._transport = transport
        self._max_attempts = max(1, max_attempts)
        self._retry_delay_seconds = max(0.0, retry_delay_seconds)
        self._inter_send_delay_seconds = max(0.0, inter_send_delay_seconds)
        self._cleanup_delay_seconds = max(0.0, cleanup_delay_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._sleep = sleep
        self._counters_lock = threading.Lock()
        self._successful_sent = 0
        self._failed_sent = 0

    def send_batch(self, user_id: str, items: Sequence[LikedItem]) -> DispatchResult:
        video_ids = tuple(item.video_id for item in items)
        if not items:
            return DispatchResult(
                user_id=user_id,
                video_ids=video_ids,
                success=False,
                error="No items to notify",
            )

        user = self._user_repository.get_user(user_id)
        if user is None or not user.is_active or user.fcm_token is None:
            LOGGER.info("push skipped; user missing, inactive or without token user_id=%s", user_id)
            return DispatchResult(
                user_id=user_id,
                video_ids=video_ids,
                success=False,
                error="User not found, inactive, or missing push token",
            )

        message = build_new_likes_message(user.fcm_token, items)
        try:
            message_id = self.send_with_retry(message)
        except Exception as exc:
            invalid_token = is_invalid_token_error(exc)
            self._record_outcome(success=False)
            LOGGER.warning(
                "push batch failed user_id=%s items=%s invalid_token=%s",
                user_id,
                len(items),
                invalid_token,
                exc_info=True,
            )
            if invalid_token:
                self._deactivate_user(user_id)
            self._telemetry.emit(
                "push.batch.finish",
                user_id=user_id,
                items=len(items),
                outcome="error",
                unregistered=invalid_token,
                error_type=type(exc).__name__,
            )
            return DispatchResult(
                user_id=user_id,
                video_ids=video_ids,
                success=False,
                error=str(exc) or type(exc).__name__,
                retryable=not invalid_token,
            )

        self._record_outcome(success=True)
        LOGGER.info(
            "push batch sent user=%s items=%s message_id=%s",
            user.label,
            len(items),
            message_id,
        )
        self._telemetry.emit(
            "push.batch.finish",
            user_id=user_id,
            items=len(items),
            outcome="ok",
        )
        return DispatchResult(
            user_id=user_id,
            video_ids=video_ids,
            success=True,
            message_id=message_id,
        )

    def send_batches(
        self,
        likes_by_user: Mapping[str, Sequence[LikedItem]],
    ) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for index, (user_id, items) in enumerate(likes_by_user.items()):
            if index > 0 and self._inter_send_delay_seconds > 0:
                self._sleep(self._inter_send_delay_seconds)
            try:
                results.append(self.send_batch(user_id, items))
            except Exception as exc:
                LOGGER.error("push dispatch crashed user_id=%s", user_id, exc_info=True)
                results.append(
                    DispatchResult(
                        user_id=user_id,
                        video_ids=tuple(item.video_id for item in items),
                        success=False,
                        error=str(exc) or type(exc).__name__,
                        retryable=True,
                    )
                )
        return results

    def send_with_retry(self, message: PushMessage, *, max_attempts: int | None = None) -> str:
        """Send with linear backoff; the last error is re-raised once attempts run out."""
        attempts = self._max_attempts if max_attempts is None else max(1, max_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                message_id = self._transport.send(
                    message.token,
                    message.data,
                    notification=message.notification,
                    dry_run=message.dry_run,
                )
            except Exception as exc:
                last_error = exc
                LOGGER.warning(
                    "push send attempt failed attempt=%s/%s error=%s",
                    attempt,
                    attempts,
                    exc,
                )
                if is_invalid_token_error(exc):
                    break
                if attempt < attempts:
                    self._sleep(self._retry_delay_seconds * attempt)
                continue

            LOGGER.debug("push send succeeded attempt=%s/%s", attempt, attempts)
            return message_id

        assert last_error is not None
        raise last_error

    def send_test_notification(self, user_id: str) -> DispatchResult:
        user = self._user_repository.get_user(user_id)
        if user is None or user.fcm_token is None:
            return DispatchResult(
                user_id=user_id,
                video_ids=(),
                success=False,
                error=MISSING_PUSH_TOKEN_ERROR,
            )

        message = PushMessage(
            token=user.fcm_token,
            data={"type": "test", "timestamp": utc_now_iso()},
            notification=TEST_NOTIFICATION,
        )
        try:
            message_id = self.send_with_retry(message, max_attempts=1)
        except Exception as exc:
            LOGGER.warning("push test notification failed user_id=%s", user_id, exc_info=True)
            return DispatchResult(
                user_id=user_id,
                video_ids=(),
                success=False,
                error=str(exc) or type(exc).__name__,
                retryable=not is_invalid_token_error(exc),
            )
        return DispatchResult(user_id=user_id, video_ids=(), success=True, message_id=message_id)

    def cleanup_invalid_tokens(self) -> int:
        """Dry-run every active token and deactivate users whose token is gone."""
        cleaned = 0
        for index, user in enumerate(self._user_repository.list_active_users()):
            if user.fcm_token is None:
                continue
            if index > 0 and self._cleanup_delay_seconds > 0:
                self._sleep(self._cleanup_delay_seconds)
            try:
                self._transport.send(user.fcm_token, {"test": "validation"}, dry_run=True)
            except Exception as exc:
                if not is_invalid_token_error(exc):
                    LOGGER.warning(
                        "push token validation inconclusive user=%s error=%s",
                        user.label,
                        exc,
                    )
                    continue
                self._deactivate_user(user.user_id)
                cleaned += 1

        LOGGER.info("push token cleanup finished deactivated=%s", cleaned)
        return cleaned

    def get_stats(self) -> PushStats:
        active_tokens = sum(
            1 for user in self._user_repository.list_active_users() if user.fcm_token is not None
        )
        with self._counters_lock:
            successful = self._successful_sent
            failed = self._failed_sent
        return PushStats(
            total_sent=successful + failed,
            successful_sent=successful,
            failed_sent=failed,
            active_tokens=active_tokens,
        )

    def _deactivate_user(self, user_id: str) -> None:
        try:
            self._user_repository.set_active(user_id, False)
        except Exception:
            LOGGER.error("push failed to deactivate user user_id=%s", user_id, exc_info=True)
            return
        LOGGER.warning("push token invalid; user deactivated user_id=%s", user_id)

    def _record_outcome(self, *, success: bool) -> None:
        with self._counters_lock:
            if success:
                self._successful_sent += 1
            else:
                self._failed_sent += 1
