from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial
from importlib import import_module
from typing import Any, cast

from ytlikes.app.models.likes import LikedItem

LOGGER = logging.getLogger("yt_likes.youtube")

YOUTUBE_SCOPES: tuple[str, ...] = ("https://www.googleapis.com/auth/youtube.readonly",)
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
MAX_IDS_PER_REQUEST = 50
UNKNOWN_TITLE = "Unknown title"


class YouTubeServiceError(Exception):
    pass


class YouTubeCredentialError(YouTubeServiceError):
    """The stored refresh token was rejected and needs out-of-band re-authorization."""


@dataclass(frozen=True)
class _GoogleModules:
    request_cls: Any
    credentials_cls: Any
    build_fn: Any
    authorized_http_cls: Any
    http_cls: Any


class YouTubeLikesClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        api_key: str | None = None,
        page_size: int = 50,
        token_refresh_timeout_seconds: float = 10.0,
        request_timeout_seconds: float = 15.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_key = api_key
        self._page_size = max(1, min(MAX_IDS_PER_REQUEST, page_size))
        self._token_refresh_timeout_seconds = max(1.0, token_refresh_timeout_seconds)
        self._request_timeout_seconds = max(1.0, request_timeout_seconds)

    def fetch_liked_videos(self, refresh_token: str) -> list[LikedItem]:
        """Newest liked videos for the account behind ``refresh_token``.

        Only one page is requested; likes older than ``page_size`` positions
        are not visible to a single call.
        """
        credentials = self._refresh_access_credentials(refresh_token)
        client = self._build_client(credentials)
        try:
            response = cast(
                dict[str, Any],
                client.videos()
                .list(
                    part="snippet,contentDetails",
                    myRating="like",
                    maxResults=self._page_size,
                )
                .execute(),
            )
        except Exception as exc:
            raise YouTubeServiceError(
                f"Failed to list liked videos: {_summarize_exception_message(exc)}"
            ) from exc

        return _parse_video_items(response)

    def get_video_details(
        self,
        video_ids: Sequence[str],
        *,
        refresh_token: str | None = None,
    ) -> list[LikedItem]:
        if not video_ids:
            return []

        credentials = (
            self._refresh_access_credentials(refresh_token) if refresh_token is not None else None
        )
        client = self._build_client(credentials)

        videos: list[LikedItem] = []
        for index in range(0, len(video_ids), MAX_IDS_PER_REQUEST):
            chunk = list(video_ids[index : index + MAX_IDS_PER_REQUEST])
            try:
                response = cast(
                    dict[str, Any],
                    client.videos()
                    .list(part="snippet,contentDetails", id=",".join(chunk), maxResults=len(chunk))
                    .execute(),
                )
            except Exception as exc:
                raise YouTubeServiceError(
                    f"Failed to fetch video details: {_summarize_exception_message(exc)}"
                ) from exc
            videos.extend(_parse_video_items(response))
        return videos

    def validate_video(self, video_id: str) -> bool:
        try:
            client = self._build_client(None)
            response = cast(
                dict[str, Any],
                client.videos().list(part="id", id=video_id, maxResults=1).execute(),
            )
        except Exception:
            LOGGER.warning("youtube video validation failed video_id=%s", video_id, exc_info=True)
            return False
        return bool(_as_list(response.get("items")))

    def _refresh_access_credentials(self, refresh_token: str) -> Any:
        if self._client_id is None or self._client_secret is None:
            raise YouTubeServiceError("YouTube OAuth client id/secret are not configured")

        modules = _load_google_modules()
        credentials = modules.credentials_cls(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=list(YOUTUBE_SCOPES),
        )
        request = partial(modules.request_cls(), timeout=self._token_refresh_timeout_seconds)
        try:
            credentials.refresh(request)
        except Exception as exc:
            LOGGER.warning("youtube oauth token_refresh_failed", exc_info=True)
            if _oauth_refresh_requires_reauth(exc):
                raise YouTubeCredentialError(
                    "YouTube refresh token has expired or was revoked"
                ) from exc
            raise YouTubeServiceError(
                f"Failed to refresh YouTube OAuth token: {_summarize_exception_message(exc)}"
            ) from exc

        if not getattr(credentials, "token", None):
            raise YouTubeCredentialError("Token refresh did not return an access token")
        return credentials

    def _build_client(self, credentials: Any | None) -> Any:
        modules = _load_google_modules()
        http = modules.http_cls(timeout=self._request_timeout_seconds)
        if credentials is not None:
            return modules.build_fn(
                "youtube",
                "v3",
                http=modules.authorized_http_cls(credentials, http=http),
                cache_discovery=False,
            )
        if self._api_key is None:
            raise YouTubeServiceError("YouTube API key is not configured")
        return modules.build_fn(
            "youtube",
            "v3",
            developerKey=self._api_key,
            http=http,
            cache_discovery=False,
        )


def _load_google_modules() -> _GoogleModules:
    try:
        requests_module = import_module("google.auth.transport.requests")
        credentials_module = import_module("google.oauth2.credentials")
        discovery_module = import_module("googleapiclient.discovery")
        auth_httplib2_module = import_module("google_auth_httplib2")
        httplib2_module = import_module("httplib2")
    except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
        raise YouTubeServiceError(
            "YouTube access requires google-api-python-client and google-auth dependencies"
        ) from exc

    return _GoogleModules(
        request_cls=requests_module.Request,
        credentials_cls=credentials_module.Credentials,
        build_fn=discovery_module.build,
        authorized_http_cls=auth_httplib2_module.AuthorizedHttp,
        http_cls=httplib2_module.Http,
    )


def _oauth_refresh_requires_reauth(exc: Exception) -> bool:
    normalized = str(exc).lower()
    markers = ("invalid_grant", "expired or revoked", "unauthorized_client", "invalid_client")
    return any(marker in normalized for marker in markers)


def _parse_video_items(response: dict[str, Any]) -> list[LikedItem]:
    videos: list[LikedItem] = []
    for item in _as_list(response.get("items")):
        item_dict = _as_dict(item)
        video_id = item_dict.get("id")
        if not isinstance(video_id, str) or not video_id.strip():
            continue

        snippet = _as_dict(item_dict.get("snippet"))
        content_details = _as_dict(item_dict.get("contentDetails"))
        videos.append(
            LikedItem(
                video_id=video_id,
                title=_coerce_nonempty_string(snippet.get("title")) or UNKNOWN_TITLE,
                duration_raw=_coerce_nonempty_string(content_details.get("duration")),
                published_at=_coerce_nonempty_string(snippet.get("publishedAt")),
                channel_title=_coerce_nonempty_string(snippet.get("channelTitle")),
                thumbnail_url=_extract_thumbnail_url(snippet),
            )
        )
    return videos


def _extract_thumbnail_url(snippet: dict[str, Any]) -> str | None:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    for quality in ("medium", "default"):
        url_value = _as_dict(thumbnails.get(quality)).get("url")
        if isinstance(url_value, str) and url_value.strip():
            return url_value
    return None


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _summarize_exception_message(exc: Exception, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        return {key: item for key, item in raw_dict.items() if isinstance(key, str)}
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
