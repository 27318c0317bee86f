"""Tests for the WordPress AJAX persistence sink."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import orjson
import pytest
from conftest import PluginSession, make_candidate

from clickwise.errors import ConfigurationError, SinkError
from clickwise.handlers import Transport
from clickwise.sinks import AjaxPersistenceSink, row_fingerprint, server_key

AJAX = "https://wp.test/wp-admin/admin-ajax.php"
REST = "https://wp.test/wp-json/"


class FakeResponse:
    def __init__(self, body: Any):
        self.body = body

    def json(self) -> Any:
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeTransport:
    def __init__(self, body: Any = None):
        self.body = {"success": True, "data": {}} if body is None else body
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, *, data: Optional[Dict[str, Any]] = None, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, "data": data})
        return FakeResponse(self.body)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        return FakeResponse(self.body)


def plugin_sink(session: PluginSession) -> AjaxPersistenceSink:
    return AjaxPersistenceSink(AJAX, "n0nce", Transport(session), rest_url=REST, rest_nonce="r3st")


class TestAjaxSink:
    def test_record_candidate_form_fields(self) -> None:
        transport = FakeTransport({"success": True, "data": {"status": "tracked"}})
        sink = AjaxPersistenceSink(AJAX, "n0nce", transport)
        ack = sink.record_candidate(make_candidate(selector="#a", detail={"text": "Go"}))

        data = transport.calls[0]["data"]
        assert data["action"] == "clickwise_record_event"
        assert data["nonce"] == "n0nce"
        assert data["status"] == "pending"
        assert data["event[type]"] == "click"
        assert data["event[selector]"] == "#a"
        assert orjson.loads(data["event[detail]"]) == {"text": "Go"}
        assert ack.fingerprint == "click:#a"
        assert ack.status == "tracked"

    def test_missing_url_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            AjaxPersistenceSink("", transport=FakeTransport()).delete_session("s1")

    def test_refusal_raises_sink_error(self) -> None:
        sink = AjaxPersistenceSink(AJAX, transport=FakeTransport({"success": False, "data": "Bad nonce"}))
        with pytest.raises(SinkError, match="Bad nonce"):
            sink.delete_session("s1")

    def test_non_json_response(self) -> None:
        sink = AjaxPersistenceSink(AJAX, transport=FakeTransport(ValueError("html")))
        with pytest.raises(SinkError):
            sink.delete_session("s1")

    def test_unregistered_action_zero_is_an_error(self) -> None:
        sink = AjaxPersistenceSink(AJAX, transport=FakeTransport(0))
        with pytest.raises(SinkError, match="unexpected response 0"):
            sink.delete_session("s1")

    def test_update_status_sends_server_key_and_alias(self) -> None:
        transport = FakeTransport()
        sink = AjaxPersistenceSink(AJAX, transport=transport)
        sink.record_candidate(make_candidate(selector="#a", name="Sign up"))
        sink.update_status("click:#a", "tracked", alias="cta")

        data = transport.calls[1]["data"]
        assert data["action"] == "clickwise_update_event_status"
        assert data["key"] == server_key("Sign up", "#a")
        assert data["alias"] == "cta"

    def test_key_returned_by_server_wins(self) -> None:
        transport = FakeTransport({"success": True, "data": {"key": "abc123"}})
        sink = AjaxPersistenceSink(AJAX, transport=transport)
        sink.record_candidate(make_candidate(selector="#a"))
        sink.update_status("click:#a", "ignored")
        assert transport.calls[1]["data"]["key"] == "abc123"

    def test_update_status_for_unknown_fingerprint(self) -> None:
        transport = FakeTransport()
        with pytest.raises(SinkError, match="click:#nope"):
            AjaxPersistenceSink(AJAX, transport=transport).update_status("click:#nope", "tracked")
        assert transport.calls == []

    def test_listing_needs_rest_url(self) -> None:
        with pytest.raises(ConfigurationError):
            AjaxPersistenceSink(AJAX, transport=FakeTransport()).list_tracked_events()

    def test_list_tracked_events_parses_rows(self) -> None:
        body = {"tracked": [
            {"key": "k1", "type": "click", "name": "Sign up", "selector": "#a",
             "status": "tracked", "example_detail": '{"text": "Sign up"}', "session_id": 7},
            {"key": "k2", "type": "custom", "name": "kb-x", "selector": "", "status": "tracked",
             "example_detail": "not json"},
            {"key": "k3", "type": "scroll", "name": "Scroll 50%", "selector": "", "status": "tracked"},
            {"key": "bad", "type": "teleport", "name": "?"},
            "junk",
        ], "ignored": [], "sessions": []}
        transport = FakeTransport(body)
        sink = AjaxPersistenceSink(AJAX, transport=transport, rest_url=REST, rest_nonce="r3st")
        events = sink.list_tracked_events()

        call = transport.calls[0]
        assert call["url"] == "https://wp.test/wp-json/clickwise/v1/events"
        assert call["params"] == {"status": "tracked"}
        assert call["headers"] == {"X-WP-Nonce": "r3st"}
        assert [e.fingerprint for e in events] == ["click:#a", "custom:kb-x", "scroll:50%"]
        assert events[0].example_detail == {"text": "Sign up"}
        assert events[0].session_id == "7"
        assert events[1].example_detail == {"raw": "not json"}


class TestAgainstPlugin:
    def test_record_then_track_updates_the_row(self) -> None:
        session = PluginSession()
        sink = plugin_sink(session)
        sink.record_candidate(make_candidate(selector="#signup-btn", name="Sign up"))
        sink.update_status("click:#signup-btn", "tracked")

        row = session.rows[PluginSession.key("Sign up", "#signup-btn")]
        assert row["status"] == "tracked"
        assert session.actions == ["clickwise_record_event", "clickwise_update_event_status"]

    def test_listing_seeds_keys_for_untrack(self) -> None:
        key = PluginSession.key("Sign up", "#signup-btn")
        session = PluginSession({key: {
            "key": key, "type": "click", "name": "Sign up", "selector": "#signup-btn",
            "status": "tracked", "example_detail": "",
        }})
        sink = plugin_sink(session)

        events = sink.list_tracked_events()
        assert [e.fingerprint for e in events] == ["click:#signup-btn"]
        assert session.rest_calls[0]["headers"] == {"X-WP-Nonce": "r3st"}

        sink.update_status("click:#signup-btn", "pending")
        assert session.rows[key]["status"] == "pending"
        assert session.actions == ["clickwise_update_event_status"]

    def test_delete_session_removes_rows(self) -> None:
        session = PluginSession()
        sink = plugin_sink(session)
        sink.record_candidate(make_candidate(selector="#a", session_id="s1"))
        sink.record_candidate(make_candidate(selector="#b", name="B", session_id="s2"))
        sink.delete_session("s1")
        assert [r["selector"] for r in session.rows.values()] == ["#b"]


class TestRowFingerprint:
    def test_kinds(self) -> None:
        assert row_fingerprint("click", "Sign up", "#a") == "click:#a"
        assert row_fingerprint("custom", "kb-x") == "custom:kb-x"
        assert row_fingerprint("scroll", "Scroll 75%") == "scroll:75%"
