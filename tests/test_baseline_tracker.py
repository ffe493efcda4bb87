from __future__ import annotations

from ytlikes.app.models.likes import LikedItem, User
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.baseline_tracker import BaselineTracker
from ytlikes.app.services.youtube_client import YouTubeCredentialError, YouTubeServiceError


def _item(video_id: str) -> LikedItem:
    return LikedItem(video_id=video_id, title=f"Title {video_id}", duration_raw="PT3M")


def _items(*video_ids: str) -> list[LikedItem]:
    return [_item(video_id) for video_id in video_ids]


class _FakeLikesSource:
    def __init__(self, snapshot: list[LikedItem] | None = None) -> None:
        self.snapshot = snapshot or []
        self.error: Exception | None = None
        self.calls: list[str] = []

    def fetch_liked_videos(self, refresh_token: str) -> list[LikedItem]:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return list(self.snapshot)


def _load(user_repository: UserRepository, user_id: str) -> User:
    user = user_repository.get_user(user_id)
    assert user is not None
    return user


def test_first_poll_seeds_baseline_and_reports_nothing(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "rt"})
    tracker = BaselineTracker(user_repository, _FakeLikesSource())

    delta = tracker.detect_new_items(_load(user_repository, "u1"), _items("a", "b", "c"))

    assert delta == []
    user = _load(user_repository, "u1")
    assert user.is_initialized
    assert user.baseline_video_ids == ("a", "b", "c")


def test_seeding_is_idempotent(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "rt"})
    tracker = BaselineTracker(user_repository, _FakeLikesSource())
    uninitialized = _load(user_repository, "u1")

    assert tracker.detect_new_items(uninitialized, _items("a", "b")) == []
    assert tracker.detect_new_items(uninitialized, _items("a", "b")) == []
    assert _load(user_repository, "u1").baseline_video_ids == ("a", "b")


def test_empty_first_snapshot_defers_seeding(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "rt"})
    likes_source = _FakeLikesSource()
    tracker = BaselineTracker(user_repository, likes_source)

    assert tracker.check_user(_load(user_repository, "u1")) == []
    user = _load(user_repository, "u1")
    assert not user.is_initialized
    assert user.baseline_video_ids is None

    likes_source.snapshot = _items(*(f"old-{index}" for index in range(20)))
    assert tracker.check_user(_load(user_repository, "u1")) == []
    seeded = _load(user_repository, "u1")
    assert seeded.is_initialized
    assert seeded.baseline_video_ids is not None
    assert len(seeded.baseline_video_ids) == 20

    likes_source.snapshot = _items("fresh", *(f"old-{index}" for index in range(20)))
    delta = tracker.check_user(_load(user_repository, "u1"))
    assert [item.video_id for item in delta] == ["fresh"]


def test_delta_contains_only_unseen_items_and_extends_baseline(
    user_repository: UserRepository,
) -> None:
    user_repository.seed_baseline("u1", ["a", "b"])
    tracker = BaselineTracker(user_repository, _FakeLikesSource())

    delta = tracker.detect_new_items(_load(user_repository, "u1"), _items("c", "a", "b", "c"))

    assert [item.video_id for item in delta] == ["c"]
    assert _load(user_repository, "u1").baseline_video_ids == ("a", "b", "c")


def test_repeated_snapshot_yields_empty_delta(user_repository: UserRepository) -> None:
    user_repository.seed_baseline("u1", ["a"])
    tracker = BaselineTracker(user_repository, _FakeLikesSource())

    first = tracker.detect_new_items(_load(user_repository, "u1"), _items("b", "a"))
    second = tracker.detect_new_items(_load(user_repository, "u1"), _items("b", "a"))

    assert [item.video_id for item in first] == ["b"]
    assert second == []


def test_shrinking_snapshot_never_removes_baseline_ids(user_repository: UserRepository) -> None:
    user_repository.seed_baseline("u1", ["a", "b", "c"])
    tracker = BaselineTracker(user_repository, _FakeLikesSource())

    delta = tracker.detect_new_items(_load(user_repository, "u1"), _items("a"))

    assert delta == []
    assert _load(user_repository, "u1").baseline_video_ids == ("a", "b", "c")

    # An un-liked item that comes back is not new again.
    assert tracker.detect_new_items(_load(user_repository, "u1"), _items("c", "a")) == []


def test_check_user_without_refresh_token_skips_fetch(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"email": "a@example.com"})
    source = _FakeLikesSource(_items("a"))
    tracker = BaselineTracker(user_repository, source)

    assert tracker.check_user(_load(user_repository, "u1")) == []
    assert source.calls == []


def test_check_user_returns_delta_from_snapshot(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "rt"})
    user_repository.seed_baseline("u1", ["a"])
    source = _FakeLikesSource(_items("new", "a"))
    tracker = BaselineTracker(user_repository, source)

    delta = tracker.check_user(_load(user_repository, "u1"))

    assert [item.video_id for item in delta] == ["new"]
    assert source.calls == ["rt"]


def test_check_user_credential_failure_deactivates_user(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "revoked"})
    user_repository.seed_baseline("u1", ["a"])
    source = _FakeLikesSource()
    source.error = YouTubeCredentialError("invalid_grant")
    tracker = BaselineTracker(user_repository, source)

    assert tracker.check_user(_load(user_repository, "u1")) == []
    assert not _load(user_repository, "u1").is_active


def test_check_user_transient_failure_keeps_user_active(user_repository: UserRepository) -> None:
    user_repository.merge_user("u1", {"youtube_refresh_token": "rt"})
    user_repository.seed_baseline("u1", ["a"])
    source = _FakeLikesSource()
    source.error = YouTubeServiceError("backendError")
    tracker = BaselineTracker(user_repository, source)

    assert tracker.check_user(_load(user_repository, "u1")) == []
    user = _load(user_repository, "u1")
    assert user.is_active
    assert user.baseline_video_ids == ("a",)
