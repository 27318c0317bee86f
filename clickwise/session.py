# clickwise/session.py
import logging
import os
import secrets
import string
import tempfile
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError

from clickwise.events import CandidateEvent, RecorderSettings

log = logging.getLogger(__name__)

DRAFT_KEY = "clickwise_overlay_data"
SETTINGS_KEY = "clickwise_overlay_settings"

_BASE36 = string.digits + string.ascii_lowercase


def _token(prefix: str) -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def new_session_id() -> str:
    return _token("sess")


def new_event_id() -> str:
    return _token("evt")


def scroll_depth(event: CandidateEvent) -> int:
    try:
        return int(event.detail.get("depth", 0))
    except (TypeError, ValueError):
        return 0


class CaptureSession(BaseModel):
    session_id: str = Field(default_factory=new_session_id)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    events: List[CandidateEvent] = Field(default_factory=list)
    frozen: bool = False

    def append(self, event: CandidateEvent) -> bool:
        if self.frozen:
            return False
        self.events.append(event)
        return True

    def freeze(self) -> None:
        self.frozen = True

    def display_order(self) -> List[CandidateEvent]:
        return list(reversed(self.events))

    def max_scroll_depth(self) -> int:
        return max((scroll_depth(e) for e in self.events if e.kind == "scroll"), default=0)


class Draft(BaseModel):
    session_id: str
    started_at: Optional[datetime] = None
    events: List[CandidateEvent] = Field(default_factory=list)
    is_finished: bool = False

    def to_session(self) -> CaptureSession:
        session = CaptureSession(session_id=self.session_id, events=list(self.events))
        if self.started_at is not None:
            session.started_at = self.started_at
        return session


# --------------------------------------------------------------------
# Key-value stores (browser local storage stand-ins)
# --------------------------------------------------------------------

class MemoryKeyValueStore:
    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileKeyValueStore:
    """All keys live in one JSON object on disk, rewritten atomically."""

    def __init__(self, path: str):
        self.path = path
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, "rb") as f:
                data = orjson.loads(f.read())
        except FileNotFoundError:
            return {}
        except orjson.JSONDecodeError:
            log.warning("draft store %s is corrupt, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(os.path.abspath(self.path)), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(orjson.dumps(data))
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class DraftStorage:
    """Reads and writes the in-progress session and recorder preferences.

    Anything unreadable is treated as absent: a broken draft means a fresh
    session, broken settings mean defaults.
    """

    def __init__(self, store: Any = None):
        self.store = store if store is not None else MemoryKeyValueStore()

    def _load_json(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.store.get(key)
        except OSError as e:
            log.warning("could not read %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            log.warning("ignoring corrupt %s blob", key)
            return None
        return data if isinstance(data, dict) else None

    def _save_json(self, key: str, data: Dict[str, Any]) -> None:
        try:
            self.store.set(key, orjson.dumps(data).decode())
        except OSError as e:
            log.error("failed to save %s: %s", key, e)

    def load_draft(self) -> Optional[Draft]:
        data = self._load_json(DRAFT_KEY)
        if data is None:
            return None
        try:
            return Draft.model_validate(data)
        except ValidationError:
            log.warning("ignoring draft that does not validate")
            return None

    def save_draft(self, session: CaptureSession, is_finished: bool = False) -> None:
        draft = Draft(
            session_id=session.session_id,
            started_at=session.started_at,
            events=session.events,
            is_finished=is_finished,
        )
        self._save_json(DRAFT_KEY, draft.model_dump(mode="json"))

    def clear_draft(self) -> None:
        try:
            self.store.remove(DRAFT_KEY)
        except OSError as e:
            log.error("failed to clear draft: %s", e)

    def load_settings(self) -> RecorderSettings:
        data = self._load_json(SETTINGS_KEY) or {}
        merged = RecorderSettings().model_dump()
        merged.update({k: v for k, v in data.items() if k in merged})
        try:
            return RecorderSettings.model_validate(merged)
        except ValidationError:
            return RecorderSettings()

    def save_settings(self, settings: RecorderSettings) -> None:
        self._save_json(SETTINGS_KEY, settings.model_dump())
