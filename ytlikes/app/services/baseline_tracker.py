from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from ytlikes.app.models.likes import LikedItem, User
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.youtube_client import YouTubeCredentialError

LOGGER = logging.getLogger("yt_likes.baseline")


class LikesSnapshotSource(Protocol):
    def fetch_liked_videos(self, refresh_token: str) -> list[LikedItem]:
        ...


class BaselineTracker:
    """Turns full liked-list snapshots into deltas against a stored baseline."""

    def __init__(self, user_repository: UserRepository, likes_source: LikesSnapshotSource) -> None:
        self._user_repository = user_repository
        self._likes_source = likes_source

    def check_user(self, user: User) -> list[LikedItem]:
        if user.youtube_refresh_token is None:
            LOGGER.info("likes check skipped; no youtube refresh token user=%s", user.label)
            return []

        try:
            snapshot = self._likes_source.fetch_liked_videos(user.youtube_refresh_token)
        except YouTubeCredentialError:
            LOGGER.warning(
                "likes check credential rejected; marking user inactive user=%s",
                user.label,
                exc_info=True,
            )
            self._user_repository.set_active(user.user_id, False)
            return []
        except Exception:
            LOGGER.warning("likes snapshot fetch failed user=%s", user.label, exc_info=True)
            return []

        return self.detect_new_items(user, snapshot)

    def detect_new_items(self, user: User, snapshot: Sequence[LikedItem]) -> list[LikedItem]:
        if not user.is_initialized or user.baseline_video_ids is None:
            if not snapshot:
                # An empty first response is not a baseline; wait for real data.
                LOGGER.info("likes baseline deferred; empty snapshot user=%s", user.label)
                return []
            # First poll: the snapshot becomes the baseline and nothing is reported.
            self._user_repository.seed_baseline(
                user.user_id,
                [item.video_id for item in snapshot],
            )
            LOGGER.info(
                "likes baseline seeded user=%s baseline_size=%s",
                user.label,
                len(snapshot),
            )
            return []

        known_ids = set(user.baseline_video_ids)
        delta: list[LikedItem] = []
        for item in snapshot:
            if item.video_id in known_ids:
                continue
            known_ids.add(item.video_id)
            delta.append(item)

        if delta:
            self._user_repository.extend_baseline(
                user.user_id,
                [item.video_id for item in delta],
            )

        LOGGER.info(
            "likes delta computed user=%s snapshot=%s new=%s",
            user.label,
            len(snapshot),
            len(delta),
        )
        return delta
