from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)


class VisitorDeviceSignal(BaseModel):
    """The slice of a ``visitors`` row the device correction needs."""

    id: str
    user_agent: str = ""
    screen_width: Optional[float] = None
    screen_height: Optional[float] = None
    device_type: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("user_agent", mode="before")
    @classmethod
    def _default_user_agent(cls, value: Any) -> Any:
        return value or ""

    @field_validator("screen_width", "screen_height", mode="before")
    @classmethod
    def _blank_dimension(cls, value: Any) -> Any:
        if value == "":
            return None
        return value


class VisitorRecord(BaseModel):
    """A full visitor row as written by visit tracking."""

    session_id: str
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    device_type: str
    browser: str
    os: str
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    referrer: Optional[str] = None
    language: str = "en"
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    is_new_visitor: bool = True
    visit_count: int = Field(default=1, ge=1)
    session_start_at: Optional[str] = None
    session_end_at: Optional[str] = None
    last_visit_at: Optional[str] = None


def validate_visitor_rows(rows: Iterable[Dict[str, Any]]) -> List[VisitorDeviceSignal]:
    """Coerce store rows, logging and dropping the ones that cannot be read."""
    signals: List[VisitorDeviceSignal] = []
    for row in rows:
        try:
            signals.append(VisitorDeviceSignal.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "visitor_row_validation_failed",
                extra={"visitor_id": row.get("id") if isinstance(row, dict) else None, "error": str(exc)[:200]},
            )
    return signals
