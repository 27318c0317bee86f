# clickwise/events.py
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal, get_args
from datetime import datetime, timezone

import orjson

EventKind = Literal[
    "click", "form_submit", "input_change", "scroll", "custom", "hover"
]

EventStatus = Literal["pending", "tracked", "ignored"]

EVENT_KINDS = get_args(EventKind)
EVENT_STATUSES = get_args(EventStatus)

# kinds whose managed rules match on the element selector
ELEMENT_KINDS = ("click", "input_change", "hover")

MAX_DETAIL_KEYS = 32
MAX_DETAIL_VALUE = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


def make_fingerprint(kind: str, locator: str) -> str:
    """Durable identity of a trackable element or event.

    ``locator`` is the selector for element kinds, the event name for
    custom events and the depth label for scroll.
    """
    return f"{kind}:{locator or ''}"


def _clip(text: str, limit: int = MAX_DETAIL_VALUE) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def cap_detail(detail: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Bound the free-form detail bag before it is stored or sent."""
    if not detail:
        return {}
    out: Dict[str, Any] = {}
    for i, (k, v) in enumerate(detail.items()):
        if i >= MAX_DETAIL_KEYS:
            break
        if v is None or isinstance(v, (bool, int, float)):
            out[str(k)] = v
        elif isinstance(v, str):
            out[str(k)] = _clip(v)
        elif isinstance(v, dict) and all(isinstance(x, str) for x in v.values()):
            out[str(k)] = {str(a): _clip(b) for a, b in list(v.items())[:MAX_DETAIL_KEYS]}
        else:
            try:
                out[str(k)] = _clip(orjson.dumps(v, default=str).decode())
            except TypeError:
                out[str(k)] = _clip(repr(v))
    return out


class CandidateEvent(BaseModel):
    id: str
    kind: EventKind
    display_name: str
    selector: str = ""
    detail: Dict[str, Any] = Field(default_factory=dict)
    fingerprint: str
    session_id: str
    timestamp: datetime = Field(default_factory=_now)

    @classmethod
    def build(
        cls,
        *,
        id: str,
        kind: str,
        display_name: str,
        session_id: str,
        selector: str = "",
        locator: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> "CandidateEvent":
        # fingerprint never looks at detail
        fp = make_fingerprint(kind, selector if locator is None else locator)
        return cls(
            id=id,
            kind=kind,
            display_name=display_name,
            selector=selector,
            detail=cap_detail(detail),
            fingerprint=fp,
            session_id=session_id,
            timestamp=timestamp or _now(),
        )


class TrackedEvent(BaseModel):
    fingerprint: str
    kind: EventKind
    name: str
    alias: Optional[str] = None
    selector: str = ""
    status: EventStatus = "pending"
    first_seen: datetime = Field(default_factory=_now)
    last_seen: datetime = Field(default_factory=_now)
    example_detail: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    session_timestamp: Optional[datetime] = None

    @property
    def forward_name(self) -> str:
        return self.alias or self.name


class Ack(BaseModel):
    fingerprint: str
    status: EventStatus
    created: bool = False


class RecorderSettings(BaseModel):
    show_duplicates: bool = False
    ignore_admin_surface: bool = True
    highlight_tracked: bool = True
