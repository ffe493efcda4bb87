from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ytlikes.app.dependencies import (
    get_auth_service,
    get_notification_dispatcher,
    get_poll_orchestrator,
    get_user_repository,
    get_work_record_repository,
)
from ytlikes.app.main import create_app
from ytlikes.app.models.likes import LikedItem, User
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.auth_service import (
    AuthService,
    IdentityVerificationError,
    VerifiedIdentity,
)
from ytlikes.app.services.baseline_tracker import BaselineTracker
from ytlikes.app.services.notification_dispatcher import NotificationDispatcher
from ytlikes.app.services.poll_orchestrator import PollCycleError, PollOrchestrator
from ytlikes.app.services.work_ledger import WorkRecordLedger

VALID_ID_TOKENS = {
    "token-uid-1": "uid-1",
    "token-uid-2": "uid-2",
}


class _FakeVerifier:
    def verify(self, id_token: str) -> VerifiedIdentity:
        user_id = VALID_ID_TOKENS.get(id_token)
        if user_id is None:
            raise IdentityVerificationError("ID token is invalid or expired")
        return VerifiedIdentity(
            user_id=user_id,
            email=f"{user_id}@example.com",
            display_name=user_id.upper(),
            sign_in_provider="google.com",
        )


class _FakeExchanger:
    def exchange(self, server_auth_code: str) -> str:
        return f"refresh-for-{server_auth_code}"


class _FakeTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, str]]] = []

    def send(
        self,
        token: str,
        data: Mapping[str, str],
        *,
        notification: tuple[str, str] | None = None,
        dry_run: bool = False,
    ) -> str:
        self.sent.append((token, dict(data)))
        return f"msg-{len(self.sent)}"


class _FakeLikesSource:
    def __init__(self) -> None:
        self.snapshot: list[LikedItem] = []

    def fetch_liked_videos(self, refresh_token: str) -> list[LikedItem]:
        return list(self.snapshot)


@dataclass
class _ApiHarness:
    app: FastAPI
    client: TestClient
    users: UserRepository
    transport: _FakeTransport
    likes_source: _FakeLikesSource


@pytest.fixture
def api(runtime_env: Path) -> Iterator[_ApiHarness]:
    users = get_user_repository()
    transport = _FakeTransport()
    likes_source = _FakeLikesSource()
    dispatcher = NotificationDispatcher(
        users,
        transport,
        inter_send_delay_seconds=0,
        sleep=lambda _seconds: None,
    )
    orchestrator = PollOrchestrator(
        user_repository=users,
        baseline_tracker=BaselineTracker(users, likes_source),
        ledger=WorkRecordLedger(get_work_record_repository()),
        dispatcher=dispatcher,
    )
    auth_service = AuthService(
        user_repository=users,
        identity_verifier=_FakeVerifier(),
        code_exchanger=_FakeExchanger(),
    )

    app = create_app()
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_poll_orchestrator] = lambda: orchestrator

    with TestClient(app) as test_client:
        yield _ApiHarness(
            app=app,
            client=test_client,
            users=users,
            transport=transport,
            likes_source=likes_source,
        )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _load(users: UserRepository, user_id: str) -> User:
    user = users.get_user(user_id)
    assert user is not None
    return user


def test_health_check(api: _ApiHarness) -> None:
    response = api.client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == "yt-likes-listener"
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(api: _ApiHarness) -> None:
    response = api.client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"


def test_cors_preflight_is_answered(api: _ApiHarness) -> None:
    response = api.client.options(
        "/auth/verify",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        },
    )

    assert response.status_code == 200
    assert "POST" in response.headers["access-control-allow-methods"]


def test_auth_verify_registers_user(api: _ApiHarness) -> None:
    response = api.client.post(
        "/auth/verify",
        json={
            "id_token": "token-uid-1",
            "fcm_token": "push-1",
            "youtube_server_auth_code": "code-9",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["has_youtube_permissions"] is True
    assert body["user"]["user_id"] == "uid-1"
    assert body["user"]["status"] == "active"
    assert body["user"]["has_push_token"] is True
    assert "youtube_refresh_token" not in body["user"]
    assert _load(api.users, "uid-1").youtube_refresh_token == "refresh-for-code-9"


def test_auth_verify_rejects_bad_token(api: _ApiHarness) -> None:
    response = api.client.post("/auth/verify", json={"id_token": "forged"})

    assert response.status_code == 401


def test_auth_verify_rejects_unknown_fields(api: _ApiHarness) -> None:
    response = api.client.post("/auth/verify", json={"id_token": "token-uid-1", "admin": True})

    assert response.status_code == 422


def test_poll_likes_detects_and_notifies(api: _ApiHarness) -> None:
    api.client.post(
        "/auth/verify",
        json={
            "id_token": "token-uid-1",
            "fcm_token": "push-1",
            "youtube_refresh_token": "rt-1",
        },
    )
    api.likes_source.snapshot = [LikedItem(video_id="V1", title="Old", duration_raw="PT3M")]

    seed = api.client.post("/poll-likes")
    assert seed.status_code == 200
    assert seed.json() == {
        "success": True,
        "users_checked": 1,
        "total_new_likes": 0,
        "notifications_sent": 0,
        "notifications_failed": 0,
    }

    api.likes_source.snapshot = [
        LikedItem(video_id="V2", title="New", duration_raw="PT2M"),
        LikedItem(video_id="V1", title="Old", duration_raw="PT3M"),
    ]
    response = api.client.post("/poll-likes")

    assert response.status_code == 200
    assert response.json()["total_new_likes"] == 1
    assert response.json()["notifications_sent"] == 1
    assert api.transport.sent[0][0] == "push-1"

    stats = api.client.get("/stats").json()
    assert stats["total_users"] == 1
    assert stats["active_users"] == 1
    assert stats["total_work_records"] == 1
    assert stats["active_push_tokens"] == 1
    assert stats["notifications_sent"] == 1


class _FailingOrchestrator:
    def run(self) -> None:
        raise PollCycleError("Unable to list active users")


def test_poll_likes_maps_cycle_failure_to_503(api: _ApiHarness) -> None:
    api.app.dependency_overrides[get_poll_orchestrator] = lambda: _FailingOrchestrator()

    response = api.client.post("/poll-likes")

    assert response.status_code == 503


def test_update_fcm_token_requires_matching_identity(api: _ApiHarness) -> None:
    api.client.post("/auth/verify", json={"id_token": "token-uid-1"})

    missing_auth = api.client.put("/users/uid-1/fcm-token", json={"fcm_token": "push-2"})
    other_user = api.client.put(
        "/users/uid-1/fcm-token",
        json={"fcm_token": "push-2"},
        headers=_bearer("token-uid-2"),
    )
    own = api.client.put(
        "/users/uid-1/fcm-token",
        json={"fcm_token": "push-2"},
        headers=_bearer("token-uid-1"),
    )

    assert missing_auth.status_code == 401
    assert other_user.status_code == 403
    assert own.status_code == 204
    assert _load(api.users, "uid-1").fcm_token == "push-2"


def test_test_notification_for_current_user(api: _ApiHarness) -> None:
    not_registered = api.client.post("/notifications/test", headers=_bearer("token-uid-2"))
    api.client.post("/auth/verify", json={"id_token": "token-uid-1", "fcm_token": "push-1"})
    response = api.client.post("/notifications/test", headers=_bearer("token-uid-1"))

    assert not_registered.status_code == 404
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert api.transport.sent[-1][1]["type"] == "test"
