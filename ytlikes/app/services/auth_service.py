from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Protocol

from ytlikes.app.models.likes import User
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.services.firebase_app import FirebaseAppProvider
from ytlikes.app.services.youtube_client import GOOGLE_TOKEN_URI, YOUTUBE_SCOPES

LOGGER = logging.getLogger("yt_likes.auth")

GOOGLE_SIGN_IN_PROVIDER = "google.com"
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
# Server auth codes minted by mobile Google Sign-In are bound to this redirect.
MOBILE_AUTH_CODE_REDIRECT_URI = "postmessage"


class IdentityVerificationError(Exception):
    pass


class AuthorizationCodeExchangeError(Exception):
    pass


@dataclass(frozen=True)
class VerifiedIdentity:
    user_id: str
    email: str | None
    display_name: str | None
    sign_in_provider: str | None
    linked_providers: tuple[str, ...] = ()

    @property
    def signed_in_with_google(self) -> bool:
        return (
            self.sign_in_provider == GOOGLE_SIGN_IN_PROVIDER
            or GOOGLE_SIGN_IN_PROVIDER in self.linked_providers
        )


@dataclass(frozen=True)
class AuthSyncResult:
    success: bool
    user: User | None = None
    has_youtube_permissions: bool | None = None
    error: str | None = None


class IdentityVerifier(Protocol):
    def verify(self, id_token: str) -> VerifiedIdentity:
        ...


class AuthorizationCodeExchanger(Protocol):
    def exchange(self, server_auth_code: str) -> str:
        ...


class FirebaseIdentityVerifier:
    def __init__(self, app_provider: FirebaseAppProvider) -> None:
        self._app_provider = app_provider

    def verify(self, id_token: str) -> VerifiedIdentity:
        try:
            app = self._app_provider.get_app()
            auth_module = import_module("firebase_admin.auth")
            claims = auth_module.verify_id_token(id_token, app=app)
        except Exception as exc:
            raise IdentityVerificationError("ID token is invalid or expired") from exc
        return identity_from_claims(claims)


class GoogleAuthCodeExchanger:
    """Trades a one-time server auth code for a long-lived YouTube refresh token."""

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str = MOBILE_AUTH_CODE_REDIRECT_URI,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri

    def exchange(self, server_auth_code: str) -> str:
        if self._client_id is None or self._client_secret is None:
            raise AuthorizationCodeExchangeError("YouTube OAuth client id/secret are not configured")

        try:
            flow_module = import_module("google_auth_oauthlib.flow")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise AuthorizationCodeExchangeError(
                "Auth code exchange requires the google-auth-oauthlib dependency"
            ) from exc

        client_config = {
            "web": {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        }
        flow_cls: Any = flow_module.Flow
        flow = flow_cls.from_client_config(
            client_config,
            scopes=list(YOUTUBE_SCOPES),
            redirect_uri=self._redirect_uri,
        )
        try:
            flow.fetch_token(code=server_auth_code)
        except Exception as exc:
            raise AuthorizationCodeExchangeError("Server auth code exchange failed") from exc

        refresh_token = getattr(flow.credentials, "refresh_token", None)
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            raise AuthorizationCodeExchangeError(
                "Google did not return a refresh token; offline access must be requested"
            )
        return refresh_token


class AuthService:
    def __init__(
        self,
        *,
        user_repository: UserRepository,
        identity_verifier: IdentityVerifier,
        code_exchanger: AuthorizationCodeExchanger,
    ) -> None:
        self._user_repository = user_repository
        self._identity_verifier = identity_verifier
        self._code_exchanger = code_exchanger

    def authenticate(self, id_token: str) -> VerifiedIdentity:
        return self._identity_verifier.verify(id_token)

    def verify_and_sync_user(
        self,
        id_token: str,
        *,
        fcm_token: str | None = None,
        server_auth_code: str | None = None,
        youtube_refresh_token: str | None = None,
    ) -> AuthSyncResult:
        try:
            identity = self._identity_verifier.verify(id_token)
        except IdentityVerificationError as exc:
            LOGGER.warning("auth id token rejected", exc_info=True)
            return AuthSyncResult(success=False, error=str(exc))

        if not identity.signed_in_with_google:
            LOGGER.warning(
                "auth rejected non-google sign-in user_id=%s provider=%s",
                identity.user_id,
                identity.sign_in_provider,
            )
            return AuthSyncResult(
                success=False,
                has_youtube_permissions=False,
                error="Google sign-in is required for YouTube access",
            )

        refresh_token = _normalize_optional(youtube_refresh_token)
        auth_code = _normalize_optional(server_auth_code)
        if auth_code is not None:
            try:
                refresh_token = self._code_exchanger.exchange(auth_code)
            except AuthorizationCodeExchangeError as exc:
                LOGGER.warning(
                    "auth code exchange failed user_id=%s",
                    identity.user_id,
                    exc_info=True,
                )
                return AuthSyncResult(success=False, has_youtube_permissions=False, error=str(exc))

        user = self.sync_user(identity, fcm_token=fcm_token, youtube_refresh_token=refresh_token)
        return AuthSyncResult(
            success=True,
            user=user,
            has_youtube_permissions=user.youtube_refresh_token is not None,
        )

    def sync_user(
        self,
        identity: VerifiedIdentity,
        *,
        fcm_token: str | None = None,
        youtube_refresh_token: str | None = None,
    ) -> User:
        """Merge profile fields; stored values survive when the caller omits them."""
        updates: dict[str, object] = {"is_active": True}
        if identity.email:
            updates["email"] = identity.email
        if identity.display_name:
            updates["display_name"] = identity.display_name
        normalized_fcm_token = _normalize_optional(fcm_token)
        if normalized_fcm_token is not None:
            updates["fcm_token"] = normalized_fcm_token
        if youtube_refresh_token is not None:
            updates["youtube_refresh_token"] = youtube_refresh_token

        self._user_repository.merge_user(identity.user_id, updates)
        user = self._user_repository.get_user(identity.user_id)
        if user is None:
            raise RuntimeError(f"user {identity.user_id} missing right after sync")

        LOGGER.info(
            "auth user synced user=%s has_refresh_token=%s has_push_token=%s",
            user.label,
            user.youtube_refresh_token is not None,
            user.fcm_token is not None,
        )
        return user

    def update_fcm_token(self, user_id: str, fcm_token: str) -> None:
        normalized = _normalize_optional(fcm_token)
        if normalized is None:
            raise ValueError("fcm_token must not be empty")
        self._user_repository.merge_user(user_id, {"fcm_token": normalized})
        LOGGER.info("auth push token updated user_id=%s", user_id)

    def deactivate_user(self, user_id: str) -> None:
        self._user_repository.set_active(user_id, False)
        LOGGER.info("auth user deactivated user_id=%s", user_id)

    def is_user_active_and_valid(self, user_id: str) -> bool:
        user = self._user_repository.get_user(user_id)
        return user is not None and user.is_active and user.fcm_token is not None


def identity_from_claims(claims: Mapping[str, Any]) -> VerifiedIdentity:
    user_id = claims.get("uid") or claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise IdentityVerificationError("ID token has no subject")

    firebase_claims = claims.get("firebase")
    if not isinstance(firebase_claims, Mapping):
        firebase_claims = {}
    identities = firebase_claims.get("identities")
    linked_providers = tuple(sorted(identities)) if isinstance(identities, Mapping) else ()
    provider = firebase_claims.get("sign_in_provider")

    return VerifiedIdentity(
        user_id=user_id,
        email=_normalize_optional(claims.get("email")),
        display_name=_normalize_optional(claims.get("name")),
        sign_in_provider=provider if isinstance(provider, str) else None,
        linked_providers=linked_providers,
    )


def _normalize_optional(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None
