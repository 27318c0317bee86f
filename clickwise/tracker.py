# clickwise/tracker.py
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import orjson

from clickwise.dom import EventTarget, Signal
from clickwise.events import CandidateEvent, TrackedEvent, make_fingerprint
from clickwise.handlers import HandlerDispatcher
from clickwise.rules import Rule, matches, matches_managed_event, parse_rules
from clickwise.selectors import CLICKABLE, SelectorSynthesizer, text_preview

log = logging.getLogger(__name__)


def detail_as_text(detail: Any) -> str:
    if isinstance(detail, (dict, list)):
        return orjson.dumps(detail, default=str).decode()
    return "" if detail is None else str(detail)


class EventForwarder:
    """Decides whether a candidate reaches the analytics handlers, and as what."""

    def __init__(self, dispatcher: HandlerDispatcher, event_rules: Iterable[Any] = (),
                 managed_rules: Sequence[TrackedEvent] = ()):
        self.dispatcher = dispatcher
        self.event_rules: List[Rule] = parse_rules(event_rules)
        self.managed_rules: List[TrackedEvent] = []
        self.set_managed_rules(managed_rules)

    def set_managed_rules(self, tracked: Iterable[TrackedEvent]) -> None:
        self.managed_rules = [t for t in tracked if t.status == "tracked"]

    def forward_custom(self, name: str, detail: Any) -> Optional[str]:
        if matches(name, self.event_rules):
            self.dispatcher.forward(name, {"detail": detail_as_text(detail)})
            return name
        return None

    def forward_candidate(self, candidate: CandidateEvent, raw_detail: Any = None) -> Optional[str]:
        if candidate.kind == "custom":
            # candidate detail is capped; handlers get the payload as dispatched
            detail = raw_detail if raw_detail is not None else candidate.detail.get("detail")
            forwarded = self.forward_custom(candidate.display_name, detail)
            if forwarded:
                return forwarded
        rule = matches_managed_event(candidate, self.managed_rules)
        if rule is None:
            return None
        self.dispatcher.forward(rule.forward_name, candidate.detail)
        return rule.forward_name


class EventTracker:
    """Forwards live interactions while nobody is recording.

    ``suppressed`` lets the recorder take over custom and managed events
    while it records, so nothing is forwarded twice.
    """

    def __init__(self, target: EventTarget, forwarder: EventForwarder, *,
                 track_forms: bool = True, track_links: bool = True,
                 page_host: Optional[str] = None,
                 suppressed: Optional[Callable[[], bool]] = None,
                 synthesizer: Optional[SelectorSynthesizer] = None):
        self.target = target
        self.forwarder = forwarder
        self.track_forms = track_forms
        self.track_links = track_links
        self.page_host = page_host
        self.suppressed = suppressed or (lambda: False)
        self.synthesizer = synthesizer or SelectorSynthesizer()
        self._listeners = {
            "click": self._on_click,
            "submit": self._on_submit,
            "custom": self._on_custom,
        }
        self.attached = False

    def attach(self) -> None:
        if self.attached:
            return
        for type, fn in self._listeners.items():
            self.target.add_listener(type, fn)
        self.attached = True

    def detach(self) -> None:
        for type, fn in self._listeners.items():
            self.target.remove_listener(type, fn)
        self.attached = False

    @property
    def dispatcher(self) -> HandlerDispatcher:
        return self.forwarder.dispatcher

    def _host(self, signal: Signal) -> Optional[str]:
        if signal.url:
            return urlparse(signal.url).hostname
        return self.page_host

    def _on_custom(self, signal: Signal) -> None:
        if self.suppressed():
            return
        self.forwarder.forward_custom(signal.name, signal.detail)

    def _on_submit(self, signal: Signal) -> None:
        form = signal.target
        if not self.track_forms or form is None:
            return
        self.dispatcher.forward("form_submit", {
            "form_name": form.get_attribute("name") or form.id or "unknown_form",
            "form_class": form.get_attribute("class") or "",
            "page": signal.url or "",
        })

    def _on_click(self, signal: Signal) -> None:
        node = signal.target
        if node is None:
            return
        if self.track_links:
            self._outbound_link(node, signal)
        self._declarative(node)
        if not self.suppressed() and self.forwarder.managed_rules:
            clickable = node.closest(CLICKABLE) or node
            selector = self.synthesizer.synthesize(clickable)
            candidate = CandidateEvent(
                id="live",
                kind="click",
                display_name="Click: " + selector,
                selector=selector,
                detail={"selector": selector, "text": text_preview(clickable, 100)},
                fingerprint=make_fingerprint("click", selector),
                session_id="",
            )
            self.forwarder.forward_candidate(candidate)

    def _outbound_link(self, node, signal: Signal) -> None:
        link = node.closest("a")
        href = link.get_attribute("href") if link is not None else None
        if not href:
            return
        host = urlparse(href).hostname
        if host and host != self._host(signal):
            self.dispatcher.forward("outbound_link_click", {
                "url": href,
                "text": link.inner_text().strip(),
            })

    def _declarative(self, node) -> None:
        el = node.closest("[data-clickwise-action]")
        if el is None:
            return
        action = el.get_attribute("data-clickwise-action")
        name = el.get_attribute("data-clickwise-name") or action
        raw = el.get_attribute("data-clickwise-detail")
        detail: Dict[str, Any] = {}
        if raw:
            try:
                parsed = orjson.loads(raw)
            except orjson.JSONDecodeError:
                log.warning("invalid JSON in data-clickwise-detail on %r", el)
                parsed = {"raw": raw}
            detail = parsed if isinstance(parsed, dict) else {"value": parsed}
        text = el.inner_text().strip()
        if not detail.get("text") and text:
            detail["text"] = text
        self.dispatcher.forward(name, detail)
