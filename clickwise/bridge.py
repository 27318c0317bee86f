# clickwise/bridge.py
import asyncio
import logging
from typing import Any, Dict, Optional

from playwright.async_api import Frame, Page

from clickwise.dom import DomNode, EventTarget, Signal

log = logging.getLogger(__name__)

BINDING = "__clickwiseBridge"

SIGNAL_TYPES = ("click", "submit", "input", "scroll", "custom", "hover")

RECORDER_JS = r"""
(() => {
  const MAX_DEPTH = 8;
  const ATTRS = ["id", "class", "name", "type", "href", "src", "alt", "role",
                 "aria-label", "title", "placeholder", "action", "method",
                 "data-clickwise-id", "data-clickwise-name",
                 "data-clickwise-action", "data-clickwise-detail",
                 "data-clickwise-hover"];

  function nthOfType(el) {
    const parent = el.parentElement;
    if (!parent) return 1;
    const same = Array.from(parent.children).filter(e => e.tagName === el.tagName);
    return same.indexOf(el) + 1;
  }

  function ownText(el) {
    try {
      const t = (el.innerText || "").trim().replace(/\s+/g, " ");
      return t.length > 120 ? t.slice(0, 117) + "..." : t;
    } catch { return ""; }
  }

  // target first, root last
  function path(el) {
    const out = [];
    while (el && el.nodeType === 1 && out.length < MAX_DEPTH) {
      const attrs = {};
      for (const a of ATTRS) {
        const v = el.getAttribute(a);
        if (v !== null) attrs[a] = v;
      }
      out.push({
        tag: el.tagName.toLowerCase(),
        attrs,
        nth: nthOfType(el),
        text: out.length === 0 ? ownText(el) : "",
      });
      if (el.tagName === "HTML") break;
      el = el.parentElement;
    }
    return out;
  }

  function throttle(fn, ms) {
    let last = 0, timer = null;
    return (...args) => {
      const now = Date.now();
      clearTimeout(timer);
      if (now - last >= ms) { last = now; fn(...args); }
      else timer = setTimeout(() => { last = Date.now(); fn(...args); }, ms - (now - last));
    };
  }

  if (window.__clickwiseRecorder) return;
  const nativeDispatch = EventTarget.prototype.dispatchEvent;

  window.__clickwiseRecorder = {
    _active: false,
    start() {
      if (this._active) return;
      this._active = true;

      const send = (type, payload) => {
        if (!this._active) return;
        try {
          window.__clickwiseBridge({ type, url: location.href, ...payload });
        } catch (e) {
          console.warn("clickwise bridge error", e);
        }
      };

      this._click = (e) => send("click", { path: path(e.target) });
      this._submit = (e) => send("submit", { path: path(e.target) });
      this._input = (e) => {
        const el = e.target;
        if (!(el instanceof Element)) return;
        // length only, never the value itself
        const len = el.value == null ? 0 : String(el.value).length;
        send("input", { path: path(el), detail: { value_length: len } });
      };
      this._hover = (e) => {
        const el = e.target instanceof Element ? e.target.closest("[data-clickwise-hover]") : null;
        if (el) send("hover", { path: path(el) });
      };
      this._scroll = throttle(() => {
        const doc = document.documentElement;
        send("scroll", {
          scroll_top: window.scrollY || doc.scrollTop,
          scroll_height: doc.scrollHeight,
          viewport_height: window.innerHeight,
        });
      }, 250);

      window.addEventListener("click", this._click, true);
      window.addEventListener("submit", this._submit, true);
      window.addEventListener("input", this._input, true);
      window.addEventListener("mouseover", this._hover, true);
      window.addEventListener("scroll", this._scroll, true);

      EventTarget.prototype.dispatchEvent = function (event) {
        if (event instanceof CustomEvent) {
          let detail = event.detail;
          try { JSON.stringify(detail); } catch { detail = String(detail); }
          send("custom", { name: event.type, detail });
        }
        return nativeDispatch.call(this, event);
      };
    },
    stop() {
      if (!this._active) return;
      window.removeEventListener("click", this._click, true);
      window.removeEventListener("submit", this._submit, true);
      window.removeEventListener("input", this._input, true);
      window.removeEventListener("mouseover", this._hover, true);
      window.removeEventListener("scroll", this._scroll, true);
      EventTarget.prototype.dispatchEvent = nativeDispatch;
      this._active = false;
    }
  };
  window.__clickwiseRecorder.start();
})();
"""

START_JS = "(()=>{ if (window.__clickwiseRecorder) window.__clickwiseRecorder.start(); return true; })()"
STOP_JS = "(()=>{ if (window.__clickwiseRecorder) window.__clickwiseRecorder.stop(); return true; })()"


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def signal_from_payload(payload: Any) -> Optional[Signal]:
    """Turn one bridge message into a Signal; None for anything unusable."""
    if not isinstance(payload, dict):
        return None
    type = payload.get("type")
    if type not in SIGNAL_TYPES:
        return None
    target = DomNode.from_snapshot(payload)
    if type in ("click", "submit", "input", "hover") and target is None:
        return None
    if type == "custom" and not payload.get("name"):
        return None
    return Signal(
        type=type,
        target=target,
        name=str(payload.get("name") or ""),
        detail=payload.get("detail"),
        scroll_top=_number(payload.get("scroll_top")),
        scroll_height=_number(payload.get("scroll_height")),
        viewport_height=_number(payload.get("viewport_height")),
        url=payload.get("url"),
    )


async def attach_bridge(page: Page, target: EventTarget) -> None:
    """Route page signals into ``target`` for every frame, now and later."""

    async def on_signal(source, payload: Dict[str, Any]):
        signal = signal_from_payload(payload)
        if signal is None:
            log.debug("dropping bridge payload %r", payload)
            return
        target.dispatch(signal)

    await page.expose_binding(BINDING, on_signal)
    # future documents, top level and iframes, preload the recorder
    await page.context.add_init_script(RECORDER_JS)

    async def start_in_frame(fr: Frame):
        try:
            await fr.evaluate(RECORDER_JS)
            await fr.evaluate(START_JS)
            log.debug("bridge attached to frame %s", fr.url)
        except Exception as e:
            log.warning("bridge attach failed in frame %s: %s", getattr(fr, "url", None), e)

    for fr in page.frames:
        await start_in_frame(fr)

    page.on("frameattached", lambda fr: asyncio.create_task(start_in_frame(fr)))
    page.on("framenavigated", lambda fr: asyncio.create_task(start_in_frame(fr)))


async def detach_bridge(page: Page) -> None:
    for fr in page.frames:
        try:
            await fr.evaluate(STOP_JS)
        except Exception as e:
            log.debug("bridge stop failed in frame %s: %s", getattr(fr, "url", None), e)
