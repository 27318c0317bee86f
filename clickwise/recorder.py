# clickwise/recorder.py
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from clickwise.dom import DomNode, EventTarget, Signal
from clickwise.events import CandidateEvent, RecorderSettings, TrackedEvent
from clickwise.selectors import (
    CLICKABLE,
    SelectorSynthesizer,
    element_details,
    human_name,
    text_preview,
)
from clickwise.session import CaptureSession, DraftStorage, new_event_id
from clickwise.tasks import TaskRunner
from clickwise.tracker import EventForwarder

log = logging.getLogger(__name__)

SIGNAL_TYPES = ("click", "submit", "input", "scroll", "custom", "hover")
SCROLL_THRESHOLDS = (25, 50, 75, 100)
INPUT_TAGS = ("input", "textarea", "select")

OVERLAY = "#clickwise-live-overlay"
ADMIN_BAR = "#wpadminbar"
IGNORED = ".clickwise-ignore"


class RecorderState(enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"


@dataclass
class RecordedEntry:
    event: CandidateEvent
    is_tracked: bool = False
    duplicate: bool = False
    highlighted: bool = False


class InteractionRecorder:
    def __init__(
        self,
        target: EventTarget,
        sink: Any,
        *,
        rule_source: Any = None,
        forwarder: Optional[EventForwarder] = None,
        drafts: Optional[DraftStorage] = None,
        settings: Optional[RecorderSettings] = None,
        synthesizer: Optional[SelectorSynthesizer] = None,
        runner: Optional[TaskRunner] = None,
        on_render: Optional[Callable[[RecordedEntry], None]] = None,
        on_admin_error: Optional[Callable[[str], None]] = None,
    ):
        self.target = target
        self.sink = sink
        if rule_source is None and hasattr(sink, "list_tracked_events"):
            rule_source = sink
        self.rule_source = rule_source
        self.forwarder = forwarder
        self.drafts = drafts or DraftStorage()
        self._settings = settings or self.drafts.load_settings()
        self.synthesizer = synthesizer or SelectorSynthesizer()
        self.runner = runner or TaskRunner()
        self.on_render = on_render
        self.on_admin_error = on_admin_error

        self._state = RecorderState.IDLE
        self._session: Optional[CaptureSession] = None
        self._seen: Set[str] = set()
        self._tracked: Set[str] = set()
        self._scroll_high = 0
        self._entries: List[RecordedEntry] = []

    # --- views --------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def settings(self) -> RecorderSettings:
        return self._settings

    def update_settings(self, **changes: Any) -> RecorderSettings:
        self._settings = self._settings.model_copy(update=changes)
        self.drafts.save_settings(self._settings)
        for entry in self._entries:
            entry.highlighted = entry.is_tracked and self._settings.highlight_tracked
        return self._settings

    def entries(self) -> List[RecordedEntry]:
        """Rendered entries, most recent first."""
        return list(reversed(self._entries))

    def is_tracked(self, fingerprint: str) -> bool:
        return fingerprint in self._tracked

    # --- lifecycle ----------------------------------------------------

    def start(self) -> bool:
        """Begin a brand new capture session."""
        if self.is_recording:
            return False
        if not self._claim():
            return False
        self.refresh_tracked()
        self._session = CaptureSession()
        self._seen = set()
        self._scroll_high = 0
        self._entries = []
        self._enter_recording()
        log.info("recording started, session %s", self._session.session_id)
        return True

    def resume(self, recording_active: bool) -> bool:
        """Pick up the stored draft after a reload.

        Returns True when an open draft was restored. With the flag active
        but no open draft a fresh session is started instead.
        """
        if self.is_recording or not recording_active:
            return False
        draft = self.drafts.load_draft()
        if draft is None or draft.is_finished:
            self.start()
            return False
        if not self._claim():
            return False
        self.refresh_tracked()
        self._session = draft.to_session()
        self._seen = {e.fingerprint for e in self._session.events}
        self._scroll_high = self._session.max_scroll_depth()
        self._entries = []
        for event in self._session.events:
            self._add_entry(event, duplicate=False)
        self._enter_recording()
        log.info("recording resumed, session %s with %d events",
                 self._session.session_id, len(self._session.events))
        return True

    def stop(self) -> None:
        """Detach every listener and freeze the session. Safe to repeat."""
        for type in SIGNAL_TYPES:
            self.target.remove_listener(type, self.handle)
        if getattr(self.target, "owner", None) is self:
            self.target.owner = None
        if not self.is_recording:
            return
        self._state = RecorderState.IDLE
        if self._session is not None:
            self._session.freeze()
            self.drafts.save_draft(self._session, is_finished=True)
            log.info("recording stopped, session %s has %d events",
                     self._session.session_id, len(self._session.events))

    def new_session(self) -> bool:
        self.stop()
        return self.start()

    def close(self) -> None:
        self.stop()
        self.drafts.clear_draft()

    def _claim(self) -> bool:
        # one recorder per browsing context
        owner = getattr(self.target, "owner", None)
        if owner is not None and owner is not self:
            log.warning("another recorder is already active on this page")
            return False
        self.target.owner = self
        return True

    def _enter_recording(self) -> None:
        for type in SIGNAL_TYPES:
            self.target.add_listener(type, self.handle)
        self._state = RecorderState.RECORDING
        self.drafts.save_draft(self._session)

    # --- tracked index ------------------------------------------------

    def refresh_tracked(self) -> None:
        if self.rule_source is None:
            return
        try:
            tracked = self.rule_source.list_tracked_events()
        except Exception as e:
            log.warning("could not load tracked events: %s", e)
            return
        self._tracked = {t.fingerprint for t in tracked if t.status == "tracked"}
        if self.forwarder is not None:
            self.forwarder.set_managed_rules(tracked)
        for entry in self._entries:
            self._mark(entry)

    # --- signal handling ----------------------------------------------

    def handle(self, signal: Signal) -> None:
        try:
            self._handle(signal)
        except Exception:
            log.exception("failed to record %s signal", signal.type)

    def _handle(self, signal: Signal) -> None:
        session = self._session
        if not self.is_recording or session is None or session.frozen:
            return
        if signal.target is not None and not self._should_track(signal.target):
            return
        for candidate in self._classify(signal, session.session_id):
            self._record(candidate, signal.detail)

    def _should_track(self, node: DomNode) -> bool:
        if node.closest(OVERLAY):
            return False
        if self._settings.ignore_admin_surface and node.closest(ADMIN_BAR):
            return False
        return node.closest(IGNORED) is None

    def _classify(self, signal: Signal, session_id: str) -> List[CandidateEvent]:
        if signal.type == "scroll":
            return self._scroll_candidates(signal, session_id)
        if signal.type == "custom":
            if not signal.name:
                return []
            return [CandidateEvent.build(
                id=new_event_id(), kind="custom", display_name=signal.name,
                locator=signal.name, session_id=session_id,
                detail={"detail": signal.detail, "interaction_type": "programmatic"},
            )]

        node = signal.target
        if node is None:
            return []
        if signal.type == "click":
            node = node.closest(CLICKABLE) or node
            kind = "click"
        elif signal.type == "hover":
            kind = "hover"
        elif signal.type == "submit":
            kind = "form_submit"
        elif signal.type == "input":
            if node.tag not in INPUT_TAGS:
                return []
            kind = "input_change"
        else:
            return []

        selector = self.synthesizer.synthesize(node)
        if not selector:
            return []
        details = element_details(node)
        detail: Dict[str, Any] = {
            "selector": selector,
            "element_type": details["type"],
            "element_tag": details["tag"],
            "element_attributes": details["attributes"],
            "interaction_type": "user_interaction",
        }
        if kind == "form_submit":
            form_name = node.get_attribute("name") or node.id or "unknown_form"
            name = "Form: " + form_name
            detail["form_name"] = form_name
            detail["action"] = node.get_attribute("action") or ""
        else:
            name = human_name(node)
        if kind in ("click", "hover"):
            detail["text"] = text_preview(node, 100)
        if kind == "input_change":
            length = 0
            if isinstance(signal.detail, dict):
                length = int(signal.detail.get("value_length") or 0)
            detail["value_length"] = length
            detail["has_value"] = length > 0
        if signal.url:
            detail["page"] = signal.url

        return [CandidateEvent.build(
            id=new_event_id(), kind=kind, display_name=name,
            selector=selector, session_id=session_id, detail=detail,
        )]

    def _scroll_candidates(self, signal: Signal, session_id: str) -> List[CandidateEvent]:
        extent = signal.scroll_height - signal.viewport_height
        if extent <= 0:
            return []
        depth = min(100.0, round(signal.scroll_top / extent * 100, 1))
        out = []
        for threshold in SCROLL_THRESHOLDS:
            # monotonic per session: scrolling back up never re-triggers
            if self._scroll_high < threshold <= depth:
                self._scroll_high = threshold
                label = f"{threshold}%"
                detail = {"depth": threshold, "page": signal.url or ""}
                out.append(CandidateEvent.build(
                    id=new_event_id(), kind="scroll", display_name=f"Scroll {label}",
                    locator=label, session_id=session_id, detail=detail,
                ))
        return out

    def _record(self, candidate: CandidateEvent, raw_detail: Any = None) -> Optional[RecordedEntry]:
        if self.forwarder is not None:
            try:
                self.forwarder.forward_candidate(candidate, raw_detail)
            except Exception:
                log.exception("forwarding %s failed", candidate.fingerprint)

        duplicate = candidate.fingerprint in self._seen
        if duplicate and not self._settings.show_duplicates:
            log.debug("dropping duplicate %s", candidate.fingerprint)
            return None
        if not self._session.append(candidate):
            return None
        self._seen.add(candidate.fingerprint)
        self.drafts.save_draft(self._session)
        entry = self._add_entry(candidate, duplicate)
        log.debug("recorded %s (%s)", candidate.fingerprint, candidate.display_name)
        # status changes for this fingerprint queue behind the upsert
        self.runner.spawn(self.sink.record_candidate, candidate, "pending", key=candidate.fingerprint)
        return entry

    def _add_entry(self, event: CandidateEvent, duplicate: bool) -> RecordedEntry:
        entry = RecordedEntry(event=event, duplicate=duplicate)
        self._mark(entry)
        self._entries.append(entry)
        if self.on_render is not None:
            try:
                self.on_render(entry)
            except Exception:
                log.exception("render callback failed")
        return entry

    def _mark(self, entry: RecordedEntry) -> None:
        entry.is_tracked = entry.event.fingerprint in self._tracked
        entry.highlighted = entry.is_tracked and self._settings.highlight_tracked

    # --- admin curation -----------------------------------------------

    def track(self, fingerprint: str) -> bool:
        return self._set_tracked(fingerprint, True)

    def untrack(self, fingerprint: str) -> bool:
        return self._set_tracked(fingerprint, False)

    def toggle(self, fingerprint: str) -> bool:
        return self._set_tracked(fingerprint, fingerprint not in self._tracked)

    def _set_tracked(self, fingerprint: str, tracked: bool) -> bool:
        # optimistic: the index changes now, the server catches up later
        if tracked:
            self._tracked.add(fingerprint)
        else:
            self._tracked.discard(fingerprint)
        for entry in self._entries:
            if entry.event.fingerprint == fingerprint:
                self._mark(entry)
        self._sync_forwarder(fingerprint, tracked)

        status = "tracked" if tracked else "pending"
        self.runner.spawn(
            self.sink.update_status, fingerprint, status, key=fingerprint,
            on_error=lambda e: self._admin_failed(f"Marking {fingerprint} as {status}", e),
        )
        return tracked

    def _sync_forwarder(self, fingerprint: str, tracked: bool) -> None:
        if self.forwarder is None:
            return
        rules = [r for r in self.forwarder.managed_rules if r.fingerprint != fingerprint]
        if tracked:
            event = next((e.event for e in self._entries if e.event.fingerprint == fingerprint), None)
            if event is not None:
                rules.append(TrackedEvent(
                    fingerprint=fingerprint, kind=event.kind, name=event.display_name,
                    selector=event.selector, status="tracked",
                ))
        self.forwarder.managed_rules = rules

    def delete_session(self, session_id: Optional[str] = None) -> None:
        if session_id is None:
            if self._session is None:
                return
            session_id = self._session.session_id
        self.runner.spawn(
            self.sink.delete_session, session_id,
            on_error=lambda e: self._admin_failed(f"Deleting session {session_id}", e),
        )

    def _admin_failed(self, action: str, exc: BaseException) -> None:
        message = f"{action} failed: {exc}"
        log.error(message)
        if self.on_admin_error is not None:
            self.on_admin_error(message)
