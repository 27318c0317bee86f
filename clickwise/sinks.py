# clickwise/sinks.py
import hashlib
import logging
from typing import Any, Dict, List, Optional, Protocol

import orjson
from pydantic import ValidationError

from clickwise.errors import ConfigurationError, SinkError
from clickwise.events import Ack, CandidateEvent, TrackedEvent, make_fingerprint
from clickwise.handlers import Transport

log = logging.getLogger(__name__)

REST_NAMESPACE = "clickwise/v1"


class PersistenceSink(Protocol):
    def record_candidate(self, event: CandidateEvent, status: str = "pending") -> Optional[Ack]: ...

    def update_status(self, fingerprint: str, status: str, alias: Optional[str] = None) -> Any: ...

    def delete_session(self, session_id: str) -> Any: ...


class TrackedRuleSource(Protocol):
    def list_tracked_events(self) -> List[TrackedEvent]: ...


def server_key(name: str, selector: str = "") -> str:
    """Row key the plugin derives for a recorded event."""
    return hashlib.md5((name + (selector or "")).encode("utf-8")).hexdigest()


def row_fingerprint(kind: str, name: str, selector: str = "") -> str:
    if selector:
        return make_fingerprint(kind, selector)
    if kind == "scroll":
        # rows store "Scroll 50%"; the fingerprint carries only the depth label
        return make_fingerprint(kind, name.rsplit(" ", 1)[-1])
    return make_fingerprint(kind, name)


class AjaxPersistenceSink:
    """Talks to the plugin's admin-ajax.php actions and its REST event listing.

    The plugin keys rows by ``server_key`` rather than by fingerprint, so the
    sink remembers which key belongs to each fingerprint it has recorded or
    listed and sends that key back on status changes.
    """

    def __init__(self, ajax_url: str, nonce: str = "", transport: Optional[Transport] = None,
                 rest_url: str = "", rest_nonce: str = ""):
        self.ajax_url = ajax_url
        self.nonce = nonce
        self.transport = transport or Transport()
        self.rest_url = rest_url
        self.rest_nonce = rest_nonce
        self._keys: Dict[str, str] = {}

    def _call(self, action: str, fields: Dict[str, Any]) -> Any:
        if not self.ajax_url:
            raise ConfigurationError("ajax_url is not configured")
        data = {"action": action, "nonce": self.nonce}
        data.update(fields)
        resp = self.transport.post(self.ajax_url, data=data)
        if resp is None:
            return None
        try:
            body = resp.json()
        except ValueError as e:
            raise SinkError(f"{action}: response is not JSON") from e
        if not isinstance(body, dict) or not body.get("success"):
            # admin-ajax answers a bare 0 for actions nobody registered
            message = body.get("data") if isinstance(body, dict) else f"unexpected response {body!r}"
            raise SinkError(f"{action}: {message}")
        return body.get("data")

    def record_candidate(self, event: CandidateEvent, status: str = "pending") -> Optional[Ack]:
        self._keys.setdefault(event.fingerprint, server_key(event.display_name, event.selector))
        data = self._call("clickwise_record_event", {
            "session_id": event.session_id,
            "status": status,
            "event[type]": event.kind,
            "event[name]": event.display_name,
            "event[selector]": event.selector,
            "event[detail]": orjson.dumps(event.detail, default=str).decode(),
        })
        if data is None:
            return None
        ack_status = status
        if isinstance(data, dict):
            if data.get("key"):
                self._keys[event.fingerprint] = str(data["key"])
            if data.get("status") in ("pending", "tracked", "ignored"):
                ack_status = data["status"]
        return Ack(fingerprint=event.fingerprint, status=ack_status)

    def update_status(self, fingerprint: str, status: str, alias: Optional[str] = None) -> Any:
        key = self._keys.get(fingerprint)
        if key is None:
            raise SinkError(f"no stored event for {fingerprint}")
        fields = {"key": key, "status": status}
        if alias is not None:
            fields["alias"] = alias
        return self._call("clickwise_update_event_status", fields)

    def delete_session(self, session_id: str) -> Any:
        return self._call("clickwise_delete_session", {"session_id": session_id})

    def list_tracked_events(self) -> List[TrackedEvent]:
        if not self.rest_url:
            raise ConfigurationError("rest_url is not configured")
        url = f"{self.rest_url.rstrip('/')}/{REST_NAMESPACE}/events"
        headers = {"X-WP-Nonce": self.rest_nonce} if self.rest_nonce else None
        resp = self.transport.get(url, params={"status": "tracked"}, headers=headers)
        if resp is None:
            return []
        try:
            body = resp.json()
        except ValueError as e:
            raise SinkError("events: response is not JSON") from e
        rows = body.get("tracked") if isinstance(body, dict) else body
        events = []
        for row in rows if isinstance(rows, list) else []:
            event = self._parse_row(row)
            if event is not None:
                events.append(event)
        return events

    def _parse_row(self, row: Any) -> Optional[TrackedEvent]:
        if not isinstance(row, dict):
            return None
        kind = row.get("type") or row.get("kind")
        name = str(row.get("name") or "")
        selector = str(row.get("selector") or "")
        detail = row.get("example_detail")
        if isinstance(detail, str):
            try:
                detail = orjson.loads(detail or "{}")
            except orjson.JSONDecodeError:
                detail = {"raw": detail}
        try:
            event = TrackedEvent.model_validate({
                "fingerprint": row_fingerprint(str(kind or ""), name, selector),
                "kind": kind,
                "name": name,
                "alias": row.get("alias") or None,
                "selector": selector,
                "status": row.get("status") or "tracked",
                "example_detail": detail if isinstance(detail, dict) else {},
                "session_id": str(row["session_id"]) if row.get("session_id") else None,
            })
        except ValidationError:
            log.warning("skipping malformed tracked event %r", row.get("key"))
            return None
        key = row.get("key") or row.get("event_key")
        self._keys[event.fingerprint] = str(key) if key else server_key(name, selector)
        return event
