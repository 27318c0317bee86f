# clickwise/store.py
# fingerprint-keyed table; with a path every mutation is appended to a JSONL log and replayed on open
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from clickwise.errors import InvalidStatusError, UnknownEventError
from clickwise.events import EVENT_STATUSES, Ack, CandidateEvent, TrackedEvent
from clickwise.writer import JsonlWriter, read_jsonl

log = logging.getLogger(__name__)

BULK_ACTIONS = {"track": "tracked", "ignore": "ignored"}


@dataclass
class BulkResult:
    updated_count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SessionSummary:
    session_id: str
    timestamp: Optional[datetime]
    events: List[TrackedEvent]


def _check_status(status: str) -> None:
    if status not in EVENT_STATUSES:
        raise InvalidStatusError(f"invalid status: {status!r}")


class EventStore:
    def __init__(self, path: Optional[str] = None):
        self._rows: Dict[str, TrackedEvent] = {}
        self._lock = threading.Lock()
        self._log: Optional[JsonlWriter] = None
        if path:
            if os.path.exists(path):
                self._replay(path)
            self._log = JsonlWriter(path=path)

    def _replay(self, path: str) -> None:
        for entry in read_jsonl(path):
            op = entry.get("op")
            if op == "put":
                try:
                    row = TrackedEvent.model_validate(entry.get("record") or {})
                except ValidationError:
                    log.warning("skipping invalid record in %s", path)
                    continue
                self._rows[row.fingerprint] = row
            elif op == "delete":
                self._rows.pop(entry.get("fingerprint"), None)
        log.info("loaded %d tracked events from %s", len(self._rows), path)

    def _put(self, row: TrackedEvent) -> None:
        self._rows[row.fingerprint] = row
        if self._log is not None:
            self._log.write({"op": "put", "record": row})

    def _delete(self, fingerprint: str) -> None:
        self._rows.pop(fingerprint, None)
        if self._log is not None:
            self._log.write({"op": "delete", "fingerprint": fingerprint})

    def close(self) -> None:
        if self._log is not None:
            self._log.close()

    def __len__(self) -> int:
        return len(self._rows)

    # --- persistence sink ---------------------------------------------

    def record_candidate(self, event: CandidateEvent, status: str = "pending") -> Ack:
        """Upsert keyed by fingerprint.

        Repeats only refresh last_seen and the example detail. The status is
        overwritten for an explicit ``tracked`` request and never otherwise,
        so traffic cannot undo an admin decision.
        """
        _check_status(status)
        now = datetime.now(timezone.utc)
        with self._lock:
            row = self._rows.get(event.fingerprint)
            if row is None:
                row = TrackedEvent(
                    fingerprint=event.fingerprint,
                    kind=event.kind,
                    name=event.display_name,
                    selector=event.selector,
                    status=status,
                    first_seen=now,
                    last_seen=now,
                    example_detail=event.detail,
                    session_id=event.session_id,
                    session_timestamp=event.timestamp,
                )
                self._put(row)
                return Ack(fingerprint=row.fingerprint, status=row.status, created=True)

            update: Dict[str, Any] = {"last_seen": now, "example_detail": event.detail}
            if status == "tracked":
                update["status"] = "tracked"
            row = row.model_copy(update=update)
            self._put(row)
            return Ack(fingerprint=row.fingerprint, status=row.status)

    def update_status(self, fingerprint: str, status: str, alias: Optional[str] = None) -> TrackedEvent:
        _check_status(status)
        with self._lock:
            row = self._rows.get(fingerprint)
            if row is None:
                raise UnknownEventError(fingerprint)
            update: Dict[str, Any] = {"status": status}
            if alias is not None:
                update["alias"] = alias or None
            row = row.model_copy(update=update)
            self._put(row)
            return row

    def delete_session(self, session_id: str) -> Dict[str, int]:
        """Drop a recording session.

        Pending rows of the session are deleted; tracked and ignored rows are
        kept but unlinked from it.
        """
        deleted = unlinked = 0
        with self._lock:
            for row in list(self._rows.values()):
                if row.session_id != session_id:
                    continue
                if row.status == "pending":
                    self._delete(row.fingerprint)
                    deleted += 1
                else:
                    self._put(row.model_copy(update={"session_id": None, "session_timestamp": None}))
                    unlinked += 1
        return {"deleted": deleted, "unlinked": unlinked}

    # --- tracked rule source ------------------------------------------

    def list_tracked_events(self) -> List[TrackedEvent]:
        return self.list_events(status="tracked")

    # --- admin --------------------------------------------------------

    def get(self, fingerprint: str) -> Optional[TrackedEvent]:
        return self._rows.get(fingerprint)

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            if fingerprint not in self._rows:
                return False
            self._delete(fingerprint)
            return True

    def bulk_action(self, fingerprints: Iterable[str], action: str) -> BulkResult:
        result = BulkResult()
        for fp in fingerprints:
            if action == "delete":
                if self.delete(fp):
                    result.updated_count += 1
                else:
                    result.errors.append(f"Failed to delete event: {fp}")
                continue
            status = BULK_ACTIONS.get(action)
            if status is None:
                result.errors.append(f"Invalid action: {action}")
                continue
            try:
                self.update_status(fp, status)
            except UnknownEventError:
                result.errors.append(f"Failed to update event: {fp}")
            else:
                result.updated_count += 1
        return result

    def list_events(self, status: Optional[str] = None, kind: Optional[str] = None) -> List[TrackedEvent]:
        rows = [
            r for r in self._rows.values()
            if (status in (None, "all") or r.status == status)
            and (kind in (None, "all") or r.kind == kind)
        ]
        rows.sort(key=lambda r: r.last_seen, reverse=True)
        return rows

    def sessions(self) -> List[SessionSummary]:
        grouped: Dict[str, SessionSummary] = {}
        for row in self.list_events():
            if not row.session_id:
                continue
            summary = grouped.get(row.session_id)
            if summary is None:
                summary = grouped[row.session_id] = SessionSummary(row.session_id, row.session_timestamp, [])
            summary.events.append(row)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(grouped.values(), key=lambda s: s.timestamp or epoch, reverse=True)
