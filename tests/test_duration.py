from __future__ import annotations

import pytest

from ytlikes.app.models.likes import LikedItem
from ytlikes.app.services.duration import (
    filter_eligible,
    is_over_length,
    is_short_form,
    parse_duration_seconds,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("PT4M13S", 253),
        ("PT1H", 3_600),
        ("PT45S", 45),
        ("PT2M", 120),
        ("PT1H2M3S", 3_723),
        ("P1DT1S", 86_401),
        ("P0D", 0),
        ("", 0),
        (None, 0),
        ("4:13", 0),
        ("PTXS", 0),
    ],
)
def test_parse_duration_seconds(raw: str | None, expected: int) -> None:
    assert parse_duration_seconds(raw) == expected


def test_short_and_over_length_boundaries() -> None:
    assert is_short_form(60)
    assert not is_short_form(61)
    assert is_over_length(361)
    assert not is_over_length(360)


def test_filter_eligible_drops_short_and_long_items() -> None:
    short = LikedItem(video_id="short", title="Short", duration_raw="PT45S")
    long = LikedItem(video_id="long", title="Long", duration_raw="PT6M40S")
    song = LikedItem(video_id="song", title="Song", duration_raw="PT3M20S")

    assert filter_eligible([short, long, song]) == [song]


def test_unknown_duration_is_not_treated_as_short_form() -> None:
    unknown = LikedItem(video_id="live", title="Live", duration_raw=None)

    assert unknown.duration_seconds == 0
    assert not unknown.is_short_form
    assert not unknown.is_over_length
    assert filter_eligible([unknown]) == [unknown]
