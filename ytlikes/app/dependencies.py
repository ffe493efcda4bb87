from __future__ import annotations

from functools import lru_cache

from ytlikes.app.config import AppSettings, load_settings
from ytlikes.app.repositories.database import Database
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.repositories.work_record_repository import WorkRecordRepository
from ytlikes.app.services.auth_service import (
    AuthService,
    FirebaseIdentityVerifier,
    GoogleAuthCodeExchanger,
)
from ytlikes.app.services.baseline_tracker import BaselineTracker
from ytlikes.app.services.firebase_app import FirebaseAppProvider
from ytlikes.app.services.notification_dispatcher import NotificationDispatcher
from ytlikes.app.services.poll_orchestrator import PollOrchestrator
from ytlikes.app.services.push_transport import FirebasePushTransport
from ytlikes.app.services.work_ledger import WorkRecordLedger
from ytlikes.app.services.youtube_client import YouTubeLikesClient
from ytlikes.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_user_repository() -> UserRepository:
    return UserRepository(get_database())


@lru_cache(maxsize=1)
def get_work_record_repository() -> WorkRecordRepository:
    return WorkRecordRepository(get_database())


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_firebase_app_provider() -> FirebaseAppProvider:
    settings = get_settings()
    return FirebaseAppProvider(
        credentials_path=settings.firebase_credentials_path,
        project_id=settings.firebase_project_id,
        http_timeout_seconds=settings.push_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeLikesClient:
    settings = get_settings()
    return YouTubeLikesClient(
        client_id=settings.youtube_client_id,
        client_secret=settings.youtube_client_secret,
        api_key=settings.youtube_api_key,
        page_size=settings.youtube_likes_page_size,
        token_refresh_timeout_seconds=settings.youtube_token_refresh_timeout_seconds,
        request_timeout_seconds=settings.youtube_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_notification_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    return NotificationDispatcher(
        get_user_repository(),
        FirebasePushTransport(get_firebase_app_provider()),
        max_attempts=settings.push_max_attempts,
        retry_delay_seconds=settings.push_retry_delay_seconds,
        inter_send_delay_seconds=settings.push_inter_send_delay_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_poll_orchestrator() -> PollOrchestrator:
    settings = get_settings()
    user_repository = get_user_repository()
    return PollOrchestrator(
        user_repository=user_repository,
        baseline_tracker=BaselineTracker(user_repository, get_youtube_client()),
        ledger=WorkRecordLedger(get_work_record_repository()),
        dispatcher=get_notification_dispatcher(),
        max_workers=settings.detection_max_workers,
        cycle_deadline_seconds=settings.cycle_deadline_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_auth_service() -> AuthService:
    settings = get_settings()
    return AuthService(
        user_repository=get_user_repository(),
        identity_verifier=FirebaseIdentityVerifier(get_firebase_app_provider()),
        code_exchanger=GoogleAuthCodeExchanger(
            client_id=settings.youtube_client_id,
            client_secret=settings.youtube_client_secret,
        ),
    )


def reset_cached_dependencies() -> None:
    get_auth_service.cache_clear()
    get_poll_orchestrator.cache_clear()
    get_notification_dispatcher.cache_clear()
    get_youtube_client.cache_clear()
    get_firebase_app_provider.cache_clear()
    get_telemetry.cache_clear()
    get_work_record_repository.cache_clear()
    get_user_repository.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
