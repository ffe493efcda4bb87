from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ytlikes.app.models.likes import User, UserStatus


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str


class AuthVerifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id_token: str = Field(min_length=1, max_length=8192)
    fcm_token: str | None = Field(default=None, max_length=4096)
    youtube_server_auth_code: str | None = Field(default=None, max_length=2048)
    youtube_refresh_token: str | None = Field(default=None, max_length=2048)

    @field_validator(
        "fcm_token",
        "youtube_server_auth_code",
        "youtube_refresh_token",
        mode="before",
    )
    @classmethod
    def _normalize_optional_fields(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class UserView(BaseModel):
    user_id: str
    email: str
    display_name: str
    status: UserStatus
    is_initialized: bool
    has_push_token: bool
    has_youtube_access: bool

    @classmethod
    def from_user(cls, user: User) -> UserView:
        return cls(
            user_id=user.user_id,
            email=user.email,
            display_name=user.display_name,
            status=user.status,
            is_initialized=user.is_initialized,
            has_push_token=user.fcm_token is not None,
            has_youtube_access=user.youtube_refresh_token is not None,
        )


class AuthVerifyResponse(BaseModel):
    success: bool
    user: UserView | None = None
    has_youtube_permissions: bool | None = None
    error: str | None = None


class PollLikesResponse(BaseModel):
    success: bool = True
    users_checked: int
    total_new_likes: int
    notifications_sent: int
    notifications_failed: int


class UpdateFcmTokenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fcm_token: str = Field(min_length=1, max_length=4096)


class NotificationResponse(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None


class StatsResponse(BaseModel):
    total_users: int
    active_users: int
    total_work_records: int
    active_push_tokens: int
    notifications_sent: int
    notifications_failed: int
