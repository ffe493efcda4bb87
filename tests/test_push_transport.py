from __future__ import annotations

import types
from pathlib import Path
from typing import Any

import pytest

from ytlikes.app.services.firebase_app import FirebaseAppProvider, FirebaseConfigurationError
from ytlikes.app.services.push_transport import (
    FirebasePushTransport,
    PushTransportError,
    is_invalid_token_error,
)


class UnregisteredError(Exception):
    code = "NOT_FOUND"


class _FakeMessaging:
    def __init__(self) -> None:
        self.sent: list[tuple[Any, bool, object]] = []
        self.error: Exception | None = None

    @staticmethod
    def Message(**kwargs: Any) -> dict[str, Any]:  # noqa: N802
        return kwargs

    @staticmethod
    def Notification(**kwargs: Any) -> dict[str, Any]:  # noqa: N802
        return kwargs

    def send(self, message: Any, dry_run: bool = False, app: object = None) -> str:
        self.sent.append((message, dry_run, app))
        if self.error is not None:
            raise self.error
        return "projects/p/messages/1"


def _install_fake_firebase(
    monkeypatch: pytest.MonkeyPatch,
    messaging: _FakeMessaging,
) -> list[dict[str, Any]]:
    initialized: list[dict[str, Any]] = []

    def _get_app(name: str) -> object:
        raise ValueError(f"no app named {name}")

    def _initialize_app(credential: object, options: dict[str, Any], name: str) -> object:
        initialized.append({"credential": credential, "options": options, "name": name})
        return types.SimpleNamespace(name=name)

    def _certificate(path: str) -> str:
        return f"cert:{path}"

    def fake_import_module(name: str) -> object:
        if name == "firebase_admin":
            return types.SimpleNamespace(get_app=_get_app, initialize_app=_initialize_app)
        if name == "firebase_admin.credentials":
            return types.SimpleNamespace(Certificate=_certificate)
        if name == "firebase_admin.messaging":
            return messaging
        raise AssertionError(f"Unexpected module import: {name}")

    monkeypatch.setattr("ytlikes.app.services.firebase_app.import_module", fake_import_module)
    monkeypatch.setattr("ytlikes.app.services.push_transport.import_module", fake_import_module)
    return initialized


def _provider(path: Path) -> FirebaseAppProvider:
    return FirebaseAppProvider(credentials_path=path, project_id="proj", http_timeout_seconds=10)


def test_send_initializes_app_once_with_timeout(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    credentials_path = tmp_path / "firebase.json"
    credentials_path.write_text("{}", encoding="utf-8")
    messaging = _FakeMessaging()
    initialized = _install_fake_firebase(monkeypatch, messaging)
    transport = FirebasePushTransport(_provider(credentials_path))

    first = transport.send("tok", {"type": "new_likes"})
    transport.send("tok", {"type": "test"}, notification=("Hi", "There"), dry_run=True)

    assert first == "projects/p/messages/1"
    assert len(initialized) == 1
    assert initialized[0]["options"] == {"httpTimeout": 10, "projectId": "proj"}
    message, dry_run, _app = messaging.sent[0]
    assert message == {"token": "tok", "data": {"type": "new_likes"}, "notification": None}
    assert not dry_run
    second_message, second_dry_run, _ = messaging.sent[1]
    assert second_message["notification"] == {"title": "Hi", "body": "There"}
    assert second_dry_run


def test_send_wraps_unregistered_token_errors(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    credentials_path = tmp_path / "firebase.json"
    credentials_path.write_text("{}", encoding="utf-8")
    messaging = _FakeMessaging()
    messaging.error = UnregisteredError("Requested entity was not found.")
    _install_fake_firebase(monkeypatch, messaging)
    transport = FirebasePushTransport(_provider(credentials_path))

    with pytest.raises(PushTransportError) as exc_info:
        transport.send("dead", {})

    assert exc_info.value.invalid_token
    assert exc_info.value.code == "NOT_FOUND"


def test_send_wraps_transient_errors(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    credentials_path = tmp_path / "firebase.json"
    credentials_path.write_text("{}", encoding="utf-8")
    messaging = _FakeMessaging()
    messaging.error = TimeoutError("read timed out")
    _install_fake_firebase(monkeypatch, messaging)
    transport = FirebasePushTransport(_provider(credentials_path))

    with pytest.raises(PushTransportError) as exc_info:
        transport.send("tok", {})

    assert not exc_info.value.invalid_token
    assert exc_info.value.code is None


def test_missing_service_account_is_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    _install_fake_firebase(monkeypatch, _FakeMessaging())
    transport = FirebasePushTransport(_provider(tmp_path / "missing.json"))

    with pytest.raises(FirebaseConfigurationError):
        transport.send("tok", {})


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (PushTransportError("x", invalid_token=True), True),
        (PushTransportError("x"), False),
        (RuntimeError("messaging/registration-token-not-registered"), True),
        (RuntimeError("The registration token is not a valid FCM registration token"), True),
        (RuntimeError("Internal error"), False),
    ],
)
def test_is_invalid_token_error(error: Exception, expected: bool) -> None:
    assert is_invalid_token_error(error) is expected
