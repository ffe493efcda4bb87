from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ytlikes.app.models.likes import LikedItem

SHORT_FORM_MAX_SECONDS = 60
OVER_LENGTH_MIN_SECONDS = 360
ISO8601_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def parse_duration_seconds(raw_value: object) -> int:
    """Total seconds of an ISO-8601 duration such as ``PT4M13S``.

    Anything unparseable counts as zero seconds instead of raising.
    ``LikedItem`` reads zero as "unknown" and never classifies it as
    short-form, so such items are still processed.
    """
    if not isinstance(raw_value, str):
        return 0
    matched = ISO8601_DURATION_PATTERN.match(raw_value.strip())
    if matched is None:
        return 0

    days = int(matched.group("days") or 0)
    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return days * 86_400 + hours * 3_600 + minutes * 60 + seconds


def is_short_form(duration_seconds: int) -> bool:
    return duration_seconds <= SHORT_FORM_MAX_SECONDS


def is_over_length(duration_seconds: int) -> bool:
    return duration_seconds > OVER_LENGTH_MIN_SECONDS


def filter_eligible(items: Iterable[LikedItem]) -> list[LikedItem]:
    eligible: list[LikedItem] = []
    for item in items:
        if item.is_short_form or item.is_over_length:
            continue
        eligible.append(item)
    return eligible
