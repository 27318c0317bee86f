# main.py
import argparse
import asyncio
import logging
from urllib.parse import urlparse

from playwright.async_api import async_playwright

from config import (
    URL,
    HEADLESS,
    VIEWPORT,
    RECORDINGS_DIR,
    STOP_HOTKEY,
    DRAFT_PATH,
    STORE_PATH,
    CLICKWISE_AJAX_URL,
    CLICKWISE_NONCE,
    CLICKWISE_REST_URL,
    CLICKWISE_REST_NONCE,
    EVENT_RULES,
    TRACK_FORMS,
    TRACK_LINKS,
    IGNORE_ADMIN,
    RYBBIT_ENABLED,
    RYBBIT_HOST,
    RYBBIT_SITE_ID,
    GA_ENABLED,
    GA_MEASUREMENT_ID,
    GA_API_SECRET,
    LOG_LEVEL,
)

from clickwise.bridge import attach_bridge, detach_bridge
from clickwise.dom import EventTarget
from clickwise.handlers import (
    GoogleAnalyticsHandler,
    HandlerDispatcher,
    RybbitHandler,
    Transport,
    skip_admin_pages,
)
from clickwise.hotkey import StopSignal, attach_hotkey
from clickwise.recorder import InteractionRecorder, RecordedEntry
from clickwise.rules import parse_rules
from clickwise.session import DraftStorage, FileKeyValueStore
from clickwise.sinks import AjaxPersistenceSink
from clickwise.store import EventStore
from clickwise.tasks import TaskRunner
from clickwise.tracker import EventForwarder, EventTracker
from clickwise.writer import JsonlWriter

# --------------------------------------------------------------------
# Wiring
# --------------------------------------------------------------------

def build_sink(transport: Transport):
    if CLICKWISE_AJAX_URL:
        print(f"→ persisting to {CLICKWISE_AJAX_URL}")
        return AjaxPersistenceSink(CLICKWISE_AJAX_URL, CLICKWISE_NONCE, transport,
                                   rest_url=CLICKWISE_REST_URL, rest_nonce=CLICKWISE_REST_NONCE)
    print(f"→ persisting to local store {STORE_PATH}")
    return EventStore(STORE_PATH)


def build_handlers(transport: Transport):
    handlers = []
    if RYBBIT_ENABLED:
        handlers.append(RybbitHandler(RYBBIT_HOST, RYBBIT_SITE_ID, transport, page_url=URL))
    if GA_ENABLED:
        handlers.append(GoogleAnalyticsHandler(GA_MEASUREMENT_ID, GA_API_SECRET, transport))
    for h in handlers:
        h.prepare()
        if h.error:
            print(f"⚠️  {h.name} disabled: {h.error}")
    return handlers


def render_to(writer: JsonlWriter):
    def on_render(entry: RecordedEntry):
        writer.write({
            "event": entry.event,
            "is_tracked": entry.is_tracked,
            "duplicate": entry.duplicate,
        })
        if writer.count <= 3:
            mark = "★" if entry.highlighted else " "
            print(f"   [rec]{mark} {entry.event.fingerprint}  ({entry.event.display_name})")
    return on_render

# --------------------------------------------------------------------
# Main
# --------------------------------------------------------------------

async def main(new_session: bool = False):
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    runner = TaskRunner()
    interceptors = [skip_admin_pages] if IGNORE_ADMIN else []
    transport = Transport(interceptors=interceptors)
    sink = build_sink(transport)
    dispatcher = HandlerDispatcher(build_handlers(transport), runner)
    forwarder = EventForwarder(dispatcher, parse_rules(EVENT_RULES, use_defaults=True))

    drafts = DraftStorage(FileKeyValueStore(DRAFT_PATH))
    writer = JsonlWriter(RECORDINGS_DIR)
    target = EventTarget()

    recorder = InteractionRecorder(
        target,
        sink,
        forwarder=forwarder,
        drafts=drafts,
        runner=runner,
        on_render=render_to(writer),
        on_admin_error=lambda msg: print(f"⚠️  {msg}"),
    )
    if recorder.settings.ignore_admin_surface != IGNORE_ADMIN:
        recorder.update_settings(ignore_admin_surface=IGNORE_ADMIN)

    tracker = EventTracker(
        target,
        forwarder,
        track_forms=TRACK_FORMS,
        track_links=TRACK_LINKS,
        page_host=urlparse(URL).hostname,
        suppressed=lambda: recorder.is_recording,
    )
    tracker.attach()

    stop_signal = StopSignal()
    attach_hotkey(STOP_HOTKEY, stop_signal,
                  on_stop=lambda: print("\n🛑 Stop hotkey pressed, finishing capture session."))

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=HEADLESS, args=["--start-maximized"])
        context = await browser.new_context(viewport=VIEWPORT)
        page = await context.new_page()

        # bridge goes in before navigation so the first document has it
        await attach_bridge(page, target)

        if recorder.resume(recording_active=not new_session):
            print(f"⏯  Resumed session {recorder.session.session_id} "
                  f"({len(recorder.session.events)} events so far)")
        else:
            if not recorder.is_recording:
                recorder.start()
            print(f"⏺  Recording session {recorder.session.session_id}")
        print(f"   Hotkey to stop: {STOP_HOTKEY}")

        print(f"→ navigating to: {URL}")
        await page.goto(URL, wait_until="domcontentloaded")

        await stop_signal.wait()

        recorder.stop()
        tracker.detach()
        await detach_bridge(page)
        await runner.drain()

        await context.close()
        await browser.close()

    writer.close()
    if isinstance(sink, EventStore):
        sink.close()

    session = recorder.session
    tracked = sum(1 for e in recorder.entries() if e.is_tracked)
    print(f"💾 Session {session.session_id}: {len(session.events)} events, {tracked} already tracked")
    print(f"   export → {writer.path}")
    print("Done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Record page interactions as candidate analytics events.")
    parser.add_argument("--new-session", action="store_true",
                        help="discard any open draft and start a fresh session")
    args = parser.parse_args()
    asyncio.run(main(new_session=args.new_session))
