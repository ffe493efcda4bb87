from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

from ytlikes.app.models.likes import WorkRecord, WorkStatus
from ytlikes.app.repositories.common import as_text_or_none, parse_iso_datetime, utc_now_iso
from ytlikes.app.repositories.database import Database


class WorkRecordRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_record(self, user_id: str, video_id: str) -> WorkRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT user_id, video_id, title, status, path, timestamp
                FROM work_records
                WHERE user_id = ? AND video_id = ?
                LIMIT 1
                """,
                (user_id, video_id),
            ).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def create_if_absent(
        self,
        *,
        user_id: str,
        video_id: str,
        title: str,
        timestamp: datetime,
        status: WorkStatus = WorkStatus.PENDING,
    ) -> bool:
        """Insert a record; returns False when one already exists for the pair."""
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO work_records (user_id, video_id, title, status, path, timestamp, updated_at)
                VALUES (?, ?, ?, ?, NULL, ?, ?)
                ON CONFLICT(user_id, video_id) DO NOTHING
                """,
                (
                    user_id,
                    video_id,
                    title,
                    status.value,
                    timestamp.astimezone(UTC).isoformat(),
                    utc_now_iso(),
                ),
            )
        return cursor.rowcount > 0

    def update_status(
        self,
        user_id: str,
        video_id: str,
        status: WorkStatus,
        *,
        path: str | None = None,
    ) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE work_records
                SET status = ?, path = COALESCE(?, path), updated_at = ?
                WHERE user_id = ? AND video_id = ?
                """,
                (status.value, path, utc_now_iso(), user_id, video_id),
            )
        return cursor.rowcount > 0

    def list_by_status(self, status: WorkStatus, *, limit: int = 500) -> list[WorkRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT user_id, video_id, title, status, path, timestamp
                FROM work_records
                WHERE status = ?
                ORDER BY timestamp ASC
                LIMIT ?
                """,
                (status.value, max(1, limit)),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def count_records(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM work_records").fetchone()
        return int(row["total"])


def _row_to_record(row: sqlite3.Row) -> WorkRecord:
    timestamp = parse_iso_datetime(row["timestamp"]) or datetime.now(UTC)
    return WorkRecord(
        user_id=str(row["user_id"]),
        video_id=str(row["video_id"]),
        title=str(row["title"]),
        status=WorkStatus(str(row["status"])),
        path=as_text_or_none(row["path"]),
        timestamp=timestamp,
    )
