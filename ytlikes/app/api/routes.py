from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException

from ytlikes.app.dependencies import (
    get_auth_service,
    get_notification_dispatcher,
    get_poll_orchestrator,
    get_user_repository,
    get_work_record_repository,
)
from ytlikes.app.models.api_contracts import (
    AuthVerifyRequest,
    AuthVerifyResponse,
    NotificationResponse,
    PollLikesResponse,
    StatsResponse,
    UpdateFcmTokenRequest,
    UserView,
)
from ytlikes.app.repositories.user_repository import UserRepository
from ytlikes.app.repositories.work_record_repository import WorkRecordRepository
from ytlikes.app.services.auth_service import (
    AuthService,
    IdentityVerificationError,
    VerifiedIdentity,
)
from ytlikes.app.services.notification_dispatcher import (
    MISSING_PUSH_TOKEN_ERROR,
    NotificationDispatcher,
)
from ytlikes.app.services.poll_orchestrator import PollCycleError, PollOrchestrator

LOGGER = logging.getLogger("yt_likes.api")

router = APIRouter()


def require_identity(
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    authorization: Annotated[str | None, Header()] = None,
) -> VerifiedIdentity:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer ID token")
    try:
        return auth_service.authenticate(token.strip())
    except IdentityVerificationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@router.post(
    "/auth/verify",
    response_model=AuthVerifyResponse,
    tags=["auth"],
    operation_id="auth_verify",
)
def auth_verify(
    request: AuthVerifyRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> AuthVerifyResponse:
    result = auth_service.verify_and_sync_user(
        request.id_token,
        fcm_token=request.fcm_token,
        server_auth_code=request.youtube_server_auth_code,
        youtube_refresh_token=request.youtube_refresh_token,
    )
    if not result.success:
        status_code = 403 if result.has_youtube_permissions is False else 401
        raise HTTPException(status_code=status_code, detail=result.error)
    assert result.user is not None
    return AuthVerifyResponse(
        success=True,
        user=UserView.from_user(result.user),
        has_youtube_permissions=result.has_youtube_permissions,
    )


@router.post(
    "/poll-likes",
    response_model=PollLikesResponse,
    tags=["poll"],
    operation_id="poll_likes",
)
def poll_likes(
    orchestrator: Annotated[PollOrchestrator, Depends(get_poll_orchestrator)],
) -> PollLikesResponse:
    try:
        summary = orchestrator.run()
    except PollCycleError as exc:
        LOGGER.error("poll-likes request failed", exc_info=True)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return PollLikesResponse(
        users_checked=summary.users_checked,
        total_new_likes=summary.total_new_likes,
        notifications_sent=summary.notifications_sent,
        notifications_failed=summary.notifications_failed,
    )


@router.post(
    "/notifications/test",
    response_model=NotificationResponse,
    tags=["notifications"],
    operation_id="send_test_notification",
)
def send_test_notification(
    identity: Annotated[VerifiedIdentity, Depends(require_identity)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> NotificationResponse:
    result = dispatcher.send_test_notification(identity.user_id)
    if result.error == MISSING_PUSH_TOKEN_ERROR:
        raise HTTPException(status_code=404, detail=result.error)
    return NotificationResponse(
        success=result.success,
        message_id=result.message_id,
        error=result.error,
    )


@router.put(
    "/users/{user_id}/fcm-token",
    status_code=204,
    tags=["users"],
    operation_id="update_fcm_token",
)
def update_fcm_token(
    user_id: str,
    request: UpdateFcmTokenRequest,
    identity: Annotated[VerifiedIdentity, Depends(require_identity)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> None:
    if identity.user_id != user_id:
        raise HTTPException(status_code=403, detail="Cannot update another user's push token")
    try:
        auth_service.update_fcm_token(user_id, request.fcm_token)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get(
    "/stats",
    response_model=StatsResponse,
    tags=["system"],
    operation_id="get_stats",
)
def get_stats(
    user_repository: Annotated[UserRepository, Depends(get_user_repository)],
    work_record_repository: Annotated[WorkRecordRepository, Depends(get_work_record_repository)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> StatsResponse:
    user_stats = user_repository.get_stats()
    push_stats = dispatcher.get_stats()
    return StatsResponse(
        total_users=user_stats.total_users,
        active_users=user_stats.active_users,
        total_work_records=work_record_repository.count_records(),
        active_push_tokens=push_stats.active_tokens,
        notifications_sent=push_stats.successful_sent,
        notifications_failed=push_stats.failed_sent,
    )
