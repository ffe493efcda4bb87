from __future__ import annotations

from collections.abc import Mapping
from importlib import import_module
from typing import Protocol

from ytlikes.app.services.firebase_app import FirebaseAppProvider

INVALID_TOKEN_MARKERS: tuple[str, ...] = (
    "registration-token-not-registered",
    "invalid-registration-token",
    "registration token is not a valid",
    "requested entity was not found",
    "unregistered",
    "senderid mismatch",
)
INVALID_TOKEN_ERROR_CLASSES: frozenset[str] = frozenset(
    {"unregisterederror", "senderidmismatcherror"}
)


class PushTransportError(Exception):
    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        invalid_token: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.invalid_token = invalid_token


class PushTransport(Protocol):
    def send(
        self,
        token: str,
        data: Mapping[str, str],
        *,
        notification: tuple[str, str] | None = None,
        dry_run: bool = False,
    ) -> str:
        ...


class FirebasePushTransport:
    """FCM sender; the per-call timeout comes from the app's ``httpTimeout``."""

    def __init__(self, app_provider: FirebaseAppProvider) -> None:
        self._app_provider = app_provider

    def send(
        self,
        token: str,
        data: Mapping[str, str],
        *,
        notification: tuple[str, str] | None = None,
        dry_run: bool = False,
    ) -> str:
        app = self._app_provider.get_app()
        messaging = import_module("firebase_admin.messaging")

        message = messaging.Message(
            token=token,
            data=dict(data),
            notification=(
                messaging.Notification(title=notification[0], body=notification[1])
                if notification is not None
                else None
            ),
        )
        try:
            return str(messaging.send(message, dry_run=dry_run, app=app))
        except Exception as exc:
            raise PushTransportError(
                str(exc) or type(exc).__name__,
                code=_extract_error_code(exc),
                invalid_token=is_invalid_token_error(exc),
            ) from exc


def is_invalid_token_error(exc: BaseException) -> bool:
    if isinstance(exc, PushTransportError):
        return exc.invalid_token
    if exc.__class__.__name__.lower() in INVALID_TOKEN_ERROR_CLASSES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in INVALID_TOKEN_MARKERS)


def _extract_error_code(exc: Exception) -> str | None:
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.strip():
        return code
    return None
