from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from ytlikes.app.models.likes import User
from ytlikes.app.repositories.common import (
    as_text_or_none,
    load_str_list,
    parse_iso_datetime,
    utc_now_iso,
)
from ytlikes.app.repositories.database import Database

# Domain field name -> column name.
_USER_COLUMNS: dict[str, str] = {
    "email": "email",
    "display_name": "display_name",
    "fcm_token": "fcm_token",
    "is_active": "is_active",
    "last_sync_timestamp": "last_sync_timestamp",
    "youtube_refresh_token": "youtube_refresh_token",
    "is_initialized": "is_initialized",
    "baseline_video_ids": "baseline_video_ids_json",
}


@dataclass(frozen=True)
class UserStats:
    total_users: int
    active_users: int


class UserRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_user(self, user_id: str) -> User | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_user(row)

    def merge_user(self, user_id: str, updates: Mapping[str, object]) -> None:
        """Create the user row if needed and overwrite only the given fields."""
        unknown = sorted(set(updates) - set(_USER_COLUMNS))
        if unknown:
            raise ValueError(f"unknown user fields: {', '.join(unknown)}")

        columns = [_USER_COLUMNS[field_name] for field_name in updates]
        values = [_to_column_value(value) for value in updates.values()]
        now_iso = utc_now_iso()

        insert_columns = ", ".join(["user_id", *columns, "created_at", "updated_at"])
        placeholders = ", ".join("?" for _ in range(len(columns) + 3))
        assignments = ", ".join(
            [
                *(f"{column} = excluded.{column}" for column in columns),
                "updated_at = excluded.updated_at",
            ]
        )
        with self._db.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO users ({insert_columns})
                VALUES ({placeholders})
                ON CONFLICT(user_id) DO UPDATE SET {assignments}
                """,
                (user_id, *values, now_iso, now_iso),
            )

    def set_active(self, user_id: str, active: bool) -> None:
        self.merge_user(user_id, {"is_active": active})

    def seed_baseline(self, user_id: str, video_ids: Iterable[str]) -> None:
        self.merge_user(
            user_id,
            {
                "is_initialized": True,
                "baseline_video_ids": _dedupe(video_ids),
            },
        )

    def extend_baseline(self, user_id: str, video_ids: Iterable[str]) -> tuple[str, ...]:
        """Append ids to the stored baseline, never dropping existing ones."""
        with self._db.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT baseline_video_ids_json FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            existing = load_str_list(row["baseline_video_ids_json"]) if row is not None else None
            merged = _dedupe([*(existing or []), *video_ids])
            now_iso = utc_now_iso()
            conn.execute(
                """
                INSERT INTO users (user_id, baseline_video_ids_json, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    baseline_video_ids_json = excluded.baseline_video_ids_json,
                    updated_at = excluded.updated_at
                """,
                (user_id, json.dumps(merged), now_iso, now_iso),
            )
        return tuple(merged)

    def update_sync_timestamp(self, user_id: str, timestamp: datetime) -> None:
        self.merge_user(user_id, {"last_sync_timestamp": timestamp})

    def list_active_users(self) -> list[User]:
        # A missing flag counts as active.
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM users
                WHERE is_active IS NULL OR is_active != 0
                ORDER BY created_at ASC, user_id ASC
                """
            ).fetchall()
        return [_row_to_user(row) for row in rows]

    def get_stats(self) -> UserStats:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_users,
                    COALESCE(SUM(CASE WHEN is_active IS NULL OR is_active != 0 THEN 1 ELSE 0 END), 0)
                        AS active_users
                FROM users
                """
            ).fetchone()
        return UserStats(
            total_users=int(row["total_users"]),
            active_users=int(row["active_users"]),
        )


def _row_to_user(row: sqlite3.Row) -> User:
    baseline = load_str_list(row["baseline_video_ids_json"])
    return User(
        user_id=str(row["user_id"]),
        email=as_text_or_none(row["email"]) or "",
        display_name=as_text_or_none(row["display_name"]) or "",
        fcm_token=as_text_or_none(row["fcm_token"]),
        is_active=row["is_active"] is None or bool(row["is_active"]),
        last_sync_timestamp=parse_iso_datetime(row["last_sync_timestamp"]),
        youtube_refresh_token=as_text_or_none(row["youtube_refresh_token"]),
        is_initialized=bool(row["is_initialized"]),
        baseline_video_ids=tuple(baseline) if baseline is not None else None,
    )


def _to_column_value(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    if isinstance(value, list | tuple):
        return json.dumps([str(item) for item in value])
    return value


def _dedupe(video_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for video_id in video_ids:
        if video_id in seen:
            continue
        seen.add(video_id)
        ordered.append(video_id)
    return ordered
