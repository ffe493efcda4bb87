from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".yt-likes"
MAX_DETECTION_WORKERS = 10
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
    ("firebase_credentials_path", Path("firebase-service-account.json")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "telemetry_enabled",
)
_OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "youtube_client_id",
    "youtube_client_secret",
    "youtube_api_key",
    "firebase_project_id",
)


def _in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_note(relative_path: Path) -> str:
    return f"Defaults to `${{YT_LIKES_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value, default)
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class AppSettings(BaseSettings):
    """
    Runtime configuration for the likes listener.

    Every option is read from `YT_LIKES_*` environment variables (or `.env`);
    descriptions below are the reference for what each one controls.
    """

    model_config = SettingsConfigDict(
        env_prefix="YT_LIKES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the SQLite store, logs and credentials.",
    )
    db_path: Path = Field(
        default=_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_note(Path('state.db'))}",
    )
    log_dir: Path = Field(
        default=_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Polling.
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias="YT_LIKES_ENABLE_SCHEDULER",
        description="Run poll cycles from an in-process background thread.",
    )
    poll_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Delay between scheduled poll cycles.",
    )
    cycle_deadline_seconds: float = Field(
        default=240.0,
        gt=0,
        description="Users not reached within this many seconds are skipped until the next cycle.",
    )
    detection_max_workers: int = Field(
        default=1,
        ge=1,
        le=MAX_DETECTION_WORKERS,
        description="Worker threads used to check users concurrently; 1 keeps cycles sequential.",
    )

    # YouTube.
    youtube_client_id: str | None = Field(
        default=None,
        description="Google OAuth client id used to refresh user tokens.",
    )
    youtube_client_secret: str | None = Field(
        default=None,
        description="Google OAuth client secret used to refresh user tokens.",
    )
    youtube_api_key: str | None = Field(
        default=None,
        description="Optional API key for unauthenticated video detail lookups.",
    )
    youtube_likes_page_size: int = Field(
        default=50,
        description="Liked videos fetched per snapshot (clamped to 1..50).",
    )
    youtube_token_refresh_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for the OAuth token refresh call.",
    )
    youtube_request_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for YouTube Data API calls.",
    )

    # Firebase.
    firebase_credentials_path: Path = Field(
        default=_in_data_dir(Path("firebase-service-account.json")),
        description=(
            "Firebase service account JSON. "
            f"{_data_dir_note(Path('firebase-service-account.json'))}"
        ),
    )
    firebase_project_id: str | None = Field(
        default=None,
        description="Firebase project id; taken from the service account when unset.",
    )

    # Push.
    push_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for each FCM send.",
    )
    push_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Send attempts per notification before giving up.",
    )
    push_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Linear backoff unit between send attempts.",
    )
    push_inter_send_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Pause between per-user batches in one dispatch run.",
    )

    # HTTP.
    cors_allow_origins: tuple[str, ...] = Field(
        default=("*",),
        description="Origins allowed by the CORS middleware.",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="`log` writes telemetry to its own log file; `none` discards it.",
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YT_LIKES_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("YT_LIKES_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("youtube_likes_page_size", mode="after")
    @classmethod
    def _clamp_page_size(cls, value: int) -> int:
        return max(1, min(50, value))

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_secrets(settings: AppSettings) -> None:
    errors: list[str] = []

    if settings.youtube_client_id is None:
        errors.append("YT_LIKES_YOUTUBE_CLIENT_ID is required to refresh user tokens.")
    if settings.youtube_client_secret is None:
        errors.append("YT_LIKES_YOUTUBE_CLIENT_SECRET is required to refresh user tokens.")
    if not settings.firebase_credentials_path.is_file():
        errors.append(
            f"Missing Firebase service account JSON: {settings.firebase_credentials_path}"
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid production configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates = {
        field_name: settings.data_dir / relative_default
        for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS
        if field_name not in settings.model_fields_set
    }
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    return settings.model_copy(
        update={
            field_name: _resolve_path(getattr(settings, field_name))
            for field_name in _PATH_FIELDS
        }
    )


def load_settings(*, validate_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_secrets:
        _validate_secrets(settings)

    return settings
