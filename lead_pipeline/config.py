"""Runtime settings for the lead pipeline engine, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lead_pipeline.constants import DRAG_ACTIVATION_DISTANCE_PX, SEARCH_DEBOUNCE_MS


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def _env_timezone(name: str) -> tzinfo:
    raw = os.environ.get(name, "").strip()
    if not raw or raw.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(raw)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"{name} is not a known time zone: {raw!r}") from exc


@dataclass(frozen=True)
class PipelineSettings:
    """Configuration for a pipeline session."""
    api_url: str = ""
    api_token: str = ""
    search_debounce_ms: int = SEARCH_DEBOUNCE_MS
    drag_threshold_px: int = DRAG_ACTIVATION_DISTANCE_PX
    display_timezone: tzinfo = timezone.utc

    @classmethod
    def from_env(cls) -> PipelineSettings:
        return cls(
            api_url=os.environ.get("LEAD_PIPELINE_API_URL", "").strip().rstrip("/"),
            api_token=os.environ.get("LEAD_PIPELINE_API_TOKEN", "").strip(),
            search_debounce_ms=_env_int(
                "LEAD_PIPELINE_SEARCH_DEBOUNCE_MS", SEARCH_DEBOUNCE_MS
            ),
            drag_threshold_px=_env_int(
                "LEAD_PIPELINE_DRAG_THRESHOLD_PX", DRAG_ACTIVATION_DISTANCE_PX
            ),
            display_timezone=_env_timezone("LEAD_PIPELINE_TIMEZONE"),
        )

    def now(self) -> datetime:
        """Current time in the display time zone; relative labels use it."""
        return datetime.now(self.display_timezone)
