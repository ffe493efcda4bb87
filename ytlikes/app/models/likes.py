from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from ytlikes.app.services.duration import (
    is_over_length,
    is_short_form,
    parse_duration_seconds,
)


class UserStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class WorkStatus(StrEnum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class User:
    user_id: str
    email: str = ""
    display_name: str = ""
    fcm_token: str | None = None
    is_active: bool = True
    last_sync_timestamp: datetime | None = None
    youtube_refresh_token: str | None = None
    is_initialized: bool = False
    baseline_video_ids: tuple[str, ...] | None = None

    @property
    def status(self) -> UserStatus:
        return UserStatus.ACTIVE if self.is_active else UserStatus.INACTIVE

    @property
    def label(self) -> str:
        """Human-friendly identifier for log lines."""
        return self.email or self.user_id


@dataclass(frozen=True)
class LikedItem:
    video_id: str
    title: str
    duration_raw: str | None = None
    published_at: str | None = None
    channel_title: str | None = None
    thumbnail_url: str | None = None

    @property
    def duration_seconds(self) -> int:
        return parse_duration_seconds(self.duration_raw)

    @property
    def is_short_form(self) -> bool:
        seconds = self.duration_seconds
        # Zero means the duration was missing or unparseable.
        return seconds > 0 and is_short_form(seconds)

    @property
    def is_over_length(self) -> bool:
        return is_over_length(self.duration_seconds)


@dataclass(frozen=True)
class WorkRecord:
    user_id: str
    video_id: str
    title: str
    status: WorkStatus
    timestamp: datetime
    path: str | None = None


def _empty_likes_by_user() -> dict[str, list[LikedItem]]:
    return {}


@dataclass(frozen=True)
class PollCycleResult:
    users_checked: int
    total_new_likes: int
    new_likes_by_user: dict[str, list[LikedItem]] = field(default_factory=_empty_likes_by_user)
    failed_user_ids: tuple[str, ...] = ()
    skipped_user_ids: tuple[str, ...] = ()
    deadline_exceeded: bool = False


@dataclass(frozen=True)
class DispatchResult:
    user_id: str
    video_ids: tuple[str, ...]
    success: bool
    message_id: str | None = None
    error: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class PollRunSummary:
    users_checked: int
    total_new_likes: int
    notifications_sent: int
    notifications_failed: int
