"""Shared fakes and page fixtures."""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional, Set

import pytest

from clickwise.dom import DomNode, EventTarget
from clickwise.errors import SinkError
from clickwise.events import Ack, CandidateEvent, TrackedEvent
from clickwise.handlers import AnalyticsHandler, HandlerDispatcher
from clickwise.session import DraftStorage, MemoryKeyValueStore
from clickwise.tasks import TaskRunner


class FakeSink:
    """Persistence sink and rule source that remembers every call."""

    def __init__(self, tracked: Optional[List[TrackedEvent]] = None, fail: Optional[Set[str]] = None):
        self.tracked = list(tracked or [])
        self.fail = set(fail or ())
        self.recorded: List[tuple] = []
        self.status_updates: List[tuple] = []
        self.deleted: List[str] = []

    def record_candidate(self, event: CandidateEvent, status: str = "pending") -> Ack:
        if "record" in self.fail:
            raise SinkError("record refused")
        self.recorded.append((event, status))
        return Ack(fingerprint=event.fingerprint, status=status)

    def update_status(self, fingerprint: str, status: str, alias: Optional[str] = None) -> None:
        if "update" in self.fail:
            raise SinkError("update refused")
        self.status_updates.append((fingerprint, status))

    def delete_session(self, session_id: str) -> None:
        if "delete" in self.fail:
            raise SinkError("delete refused")
        self.deleted.append(session_id)

    def list_tracked_events(self) -> List[TrackedEvent]:
        if "list" in self.fail:
            raise SinkError("list refused")
        return list(self.tracked)


class PluginResponse:
    def __init__(self, body: Any):
        self.body = body

    def json(self) -> Any:
        return self.body

    def raise_for_status(self) -> None:
        pass


class PluginSession:
    """requests.Session stand-in that answers like the WordPress plugin.

    Rows are keyed by md5(name + selector); admin-ajax answers a bare 0 for
    actions the plugin never registered.
    """

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows: Dict[str, Dict[str, Any]] = dict(rows or {})
        self.actions: List[str] = []
        self.rest_calls: List[Dict[str, Any]] = []

    @staticmethod
    def key(name: str, selector: str = "") -> str:
        return hashlib.md5((name + selector).encode("utf-8")).hexdigest()

    def post(self, url: str, data: Optional[Dict[str, Any]] = None, **kwargs: Any) -> PluginResponse:
        data = data or {}
        action = data.get("action")
        self.actions.append(action)
        if action == "clickwise_record_event":
            key = self.key(data["event[name]"], data.get("event[selector]", ""))
            if key in self.rows:
                return PluginResponse({"success": True, "data": "Event updated"})
            self.rows[key] = {
                "key": key, "type": data["event[type]"], "name": data["event[name]"],
                "selector": data.get("event[selector]", ""), "status": "pending",
                "session_id": data.get("session_id"), "example_detail": data.get("event[detail]", ""),
            }
            return PluginResponse({"success": True, "data": "Event recorded"})
        if action == "clickwise_update_event_status":
            row = self.rows.get(data.get("key"))
            if row is None:
                return PluginResponse({"success": False, "data": "Event not found"})
            row["status"] = data["status"]
            if "alias" in data:
                row["alias"] = data["alias"]
            return PluginResponse({"success": True, "data": "Status updated"})
        if action == "clickwise_delete_session":
            self.rows = {k: r for k, r in self.rows.items() if r.get("session_id") != data.get("session_id")}
            return PluginResponse({"success": True, "data": "Session deleted"})
        return PluginResponse(0)

    def get(self, url: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> PluginResponse:
        self.rest_calls.append({"url": url, "params": params, "headers": headers})
        status = (params or {}).get("status", "all")
        rows = [dict(r) for r in self.rows.values() if status in ("all", r["status"])]
        return PluginResponse({
            "tracked": [r for r in rows if r["status"] == "tracked"],
            "ignored": [r for r in rows if r["status"] == "ignored"],
            "sessions": [],
        })


class FakeHandler(AnalyticsHandler):
    name = "fake"

    def __init__(self):
        super().__init__()
        self.sent: List[tuple] = []

    def forward(self, name: str, properties: Dict[str, Any]) -> None:
        self.sent.append((name, properties))


def make_candidate(kind: str = "click", selector: str = "#a", name: str = "A",
                   session_id: str = "sess_1", locator: Optional[str] = None,
                   detail: Optional[Dict[str, Any]] = None) -> CandidateEvent:
    return CandidateEvent.build(
        id="evt_1", kind=kind, display_name=name, selector=selector,
        locator=locator, session_id=session_id, detail=detail,
    )


def tracked(fingerprint: str, kind: str = "click", name: str = "A", selector: str = "",
            alias: Optional[str] = None) -> TrackedEvent:
    return TrackedEvent(fingerprint=fingerprint, kind=kind, name=name,
                        selector=selector, alias=alias, status="tracked")


@pytest.fixture
def page() -> Dict[str, DomNode]:
    """A small landing page: nav, signup button, contact form, admin bar."""
    body = DomNode("body")
    admin = body.append(DomNode("div", {"id": "wpadminbar"}))
    admin_link = admin.append(DomNode("a", {"href": "/wp-admin/"}, text="Dashboard"))
    main = body.append(DomNode("main", {"class": "content"}))
    signup = main.append(DomNode("button", {"id": "signup-btn"}, text="Sign up"))
    icon = signup.append(DomNode("span", {"class": "icon"}))
    form = main.append(DomNode("form", {"id": "contact", "action": "/send"}))
    email = form.append(DomNode("input", {"type": "email", "name": "email"}))
    note = form.append(DomNode("div", {"class": "note"}, text="We reply fast"))
    overlay = body.append(DomNode("div", {"id": "clickwise-live-overlay"}))
    overlay_btn = overlay.append(DomNode("button", {"class": "close"}, text="x"))
    quiet = body.append(DomNode("div", {"class": "clickwise-ignore"}))
    quiet_btn = quiet.append(DomNode("button", {"class": "promo"}, text="Hidden"))
    return {
        "body": body, "admin_link": admin_link, "signup": signup, "icon": icon,
        "form": form, "email": email, "note": note, "overlay_btn": overlay_btn,
        "quiet_btn": quiet_btn,
    }


@pytest.fixture
def target() -> EventTarget:
    return EventTarget()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def drafts(kv: MemoryKeyValueStore) -> DraftStorage:
    return DraftStorage(kv)


@pytest.fixture
def runner() -> TaskRunner:
    return TaskRunner()


@pytest.fixture
def handler() -> FakeHandler:
    return FakeHandler()


@pytest.fixture
def dispatcher(handler: FakeHandler, runner: TaskRunner) -> HandlerDispatcher:
    return HandlerDispatcher([handler], runner)
