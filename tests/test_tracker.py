"""Tests for forwarding decisions and the always-on tracker."""

from __future__ import annotations

from conftest import FakeHandler, make_candidate, tracked

from clickwise.dom import DomNode, EventTarget, Signal
from clickwise.handlers import HandlerDispatcher
from clickwise.tasks import TaskRunner
from clickwise.tracker import EventForwarder, EventTracker, detail_as_text


def setup(**kwargs):
    handler = FakeHandler()
    forwarder = EventForwarder(HandlerDispatcher([handler], TaskRunner()), kwargs.pop("rules", ()))
    target = EventTarget()
    tracker = EventTracker(target, forwarder, page_host="shop.example.com", **kwargs)
    tracker.attach()
    return handler, forwarder, target, tracker


class TestEventForwarder:
    def test_custom_event_by_rule(self) -> None:
        handler = FakeHandler()
        forwarder = EventForwarder(HandlerDispatcher([handler], TaskRunner()), "kb-\nwc-")
        assert forwarder.forward_custom("wc-add", {"sku": "A1"}) == "wc-add"
        assert forwarder.forward_custom("other", None) is None
        assert handler.sent == [("wc-add", {"detail": '{"sku":"A1"}'})]

    def test_only_tracked_rows_become_managed_rules(self) -> None:
        forwarder = EventForwarder(HandlerDispatcher([], TaskRunner()))
        pending = tracked("click:#b", selector="#b").model_copy(update={"status": "pending"})
        forwarder.set_managed_rules([tracked("click:#a", selector="#a"), pending])
        assert [r.fingerprint for r in forwarder.managed_rules] == ["click:#a"]

    def test_candidate_forwarded_under_alias(self) -> None:
        handler = FakeHandler()
        forwarder = EventForwarder(
            HandlerDispatcher([handler], TaskRunner()),
            managed_rules=[tracked("click:#a", selector="#a", alias="hero")],
        )
        assert forwarder.forward_candidate(make_candidate(selector="#a", detail={"text": "Go"})) == "hero"
        assert handler.sent == [("hero", {"text": "Go"})]

    def test_detail_as_text(self) -> None:
        assert detail_as_text(None) == ""
        assert detail_as_text("plain") == "plain"
        assert detail_as_text([1, 2]) == "[1,2]"


class TestEventTracker:
    def test_outbound_link(self) -> None:
        handler, _, target, _ = setup()
        link = DomNode("a", {"href": "https://other.org/partner"}, text=" Partner ")
        target.dispatch(Signal(type="click", target=link, url="https://shop.example.com/"))
        assert handler.sent == [("outbound_link_click", {"url": "https://other.org/partner", "text": "Partner"})]

    def test_same_host_and_relative_links_ignored(self) -> None:
        handler, _, target, _ = setup()
        target.dispatch(Signal(type="click", target=DomNode("a", {"href": "/pricing"})))
        target.dispatch(Signal(type="click", target=DomNode("a", {"href": "https://shop.example.com/x"})))
        assert handler.sent == []

    def test_link_tracking_can_be_disabled(self) -> None:
        handler, _, target, _ = setup(track_links=False)
        target.dispatch(Signal(type="click", target=DomNode("a", {"href": "https://other.org/"})))
        assert handler.sent == []

    def test_declarative_action(self) -> None:
        handler, _, target, _ = setup()
        button = DomNode("button", {
            "data-clickwise-action": "signup",
            "data-clickwise-detail": '{"plan": "pro"}',
        }, text="Go")
        icon = button.append(DomNode("i"))
        target.dispatch(Signal(type="click", target=icon))
        assert handler.sent == [("signup", {"plan": "pro", "text": "Go"})]

    def test_declarative_action_with_bad_json(self) -> None:
        handler, _, target, _ = setup()
        button = DomNode("button", {
            "data-clickwise-action": "signup",
            "data-clickwise-name": "Signup clicked",
            "data-clickwise-detail": "{oops",
        })
        target.dispatch(Signal(type="click", target=button))
        assert handler.sent == [("Signup clicked", {"raw": "{oops"})]

    def test_form_submit(self) -> None:
        handler, _, target, _ = setup()
        form = DomNode("form", {"id": "newsletter", "class": "wide"})
        target.dispatch(Signal(type="submit", target=form, url="https://shop.example.com/"))
        assert handler.sent == [("form_submit", {
            "form_name": "newsletter", "form_class": "wide", "page": "https://shop.example.com/",
        })]

    def test_custom_events_suppressed_while_recording(self) -> None:
        recording = {"on": True}
        handler, _, target, _ = setup(rules=["kb-"], suppressed=lambda: recording["on"])
        target.dispatch(Signal(type="custom", name="kb-open"))
        assert handler.sent == []
        recording["on"] = False
        target.dispatch(Signal(type="custom", name="kb-open"))
        assert [name for name, _ in handler.sent] == ["kb-open"]

    def test_managed_click_while_idle(self) -> None:
        handler, forwarder, target, _ = setup()
        forwarder.set_managed_rules([tracked("click:#signup-btn", name="Sign up", selector="#signup-btn")])
        button = DomNode("button", {"id": "signup-btn"}, text="Sign up")
        target.dispatch(Signal(type="click", target=button.append(DomNode("span"))))
        assert [name for name, _ in handler.sent] == ["Sign up"]

    def test_detach_removes_listeners(self) -> None:
        _, _, target, tracker = setup()
        tracker.attach()
        assert target.listener_count() == 3
        tracker.detach()
        assert target.listener_count() == 0
