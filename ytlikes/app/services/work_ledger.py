from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from ytlikes.app.models.likes import LikedItem
from ytlikes.app.repositories.common import utc_now
from ytlikes.app.repositories.work_record_repository import WorkRecordRepository
from ytlikes.app.services.duration import filter_eligible

LOGGER = logging.getLogger("yt_likes.ledger")


class WorkRecordLedger:
    """Final idempotency gate between detected likes and notifications.

    The baseline normally absorbs repeats, but a hand-edited baseline or two
    overlapping cycles can still surface an item twice; the
    ``(user_id, video_id)`` record is what decides.
    """

    def __init__(
        self,
        repository: WorkRecordRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def record_if_new(self, user_id: str, items: Sequence[LikedItem]) -> list[LikedItem]:
        eligible = filter_eligible(items)
        dropped = len(items) - len(eligible)
        if dropped:
            LOGGER.info(
                "ledger filtered items user_id=%s dropped=%s (short-form or over-length)",
                user_id,
                dropped,
            )

        recorded: list[LikedItem] = []
        for item in eligible:
            if self._repository.get_record(user_id, item.video_id) is not None:
                LOGGER.info(
                    "ledger skipped already recorded item user_id=%s video_id=%s",
                    user_id,
                    item.video_id,
                )
                continue
            created = self._repository.create_if_absent(
                user_id=user_id,
                video_id=item.video_id,
                title=item.title,
                timestamp=self._clock(),
            )
            if created:
                recorded.append(item)

        return recorded
