from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "yt_likes.telemetry"
REDACTED = "[redacted]"

# Attribute names containing any of these fragments never leave the process.
_REDACTED_KEY_FRAGMENTS: tuple[str, ...] = (
    "authorization",
    "credential",
    "email",
    "secret",
    "title",
    "token",
)
_MAX_VALUE_LENGTH = 120

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class DiscardingTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        del event_name, attributes


class LogTelemetrySink:
    """Writes each event as one structlog record on the telemetry logger."""

    def __init__(self, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=DiscardingTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=redact_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=LogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "telemetry disabled; unknown sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def redact_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    cleaned: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(fragment in key for fragment in _REDACTED_KEY_FRAGMENTS):
            cleaned[key] = REDACTED
        else:
            cleaned[key] = _scalar(raw_value)
    return cleaned


def _scalar(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        # Collections and objects are reduced to their type name.
        return type(value).__name__
    compact = " ".join(value.split())
    if len(compact) > _MAX_VALUE_LENGTH:
        return compact[:_MAX_VALUE_LENGTH] + "..."
    return compact
