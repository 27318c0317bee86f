# clickwise/selectors.py
import re
from typing import Any, Dict, Optional

from clickwise.dom import DomNode

TRACKING_ATTRIBUTE = "data-clickwise-id"
NAME_ATTRIBUTE = "data-clickwise-name"

# a click on an icon inside a button counts as a click on the button
CLICKABLE = 'a, button, input[type="submit"], input[type="button"]'

TEXT_TAGS = {"div", "span", "p", "h1", "h2", "h3", "h4", "h5", "h6"}

_WS = re.compile(r"\s+")


class SelectorSynthesizer:
    """Stable, readable locator for an element.

    Identifier selectors short-circuit; otherwise the path walks at most
    ``max_depth`` levels up and stops at the first ancestor with an id.
    """

    def __init__(self, tracking_attribute: str = TRACKING_ATTRIBUTE, max_depth: int = 4):
        self.tracking_attribute = tracking_attribute
        self.max_depth = max_depth

    def synthesize(self, node: Optional[DomNode]) -> str:
        if not isinstance(node, DomNode):
            return ""
        if node.id:
            return f"#{node.id}"
        tracking = node.get_attribute(self.tracking_attribute)
        if tracking is not None:
            return f'[{self.tracking_attribute}="{tracking}"]'
        name = node.get_attribute("name")
        if name:
            return f'{node.tag}[name="{name}"]'

        parts = []
        current: Optional[DomNode] = node
        depth = 0
        while current is not None and depth < self.max_depth:
            if current.id:
                parts.insert(0, f"#{current.id}")
                break
            parts.insert(0, self._segment(current))
            current = current.parent
            depth += 1
        return " > ".join(parts)

    @staticmethod
    def _segment(node: DomNode) -> str:
        part = node.tag
        classes = node.classes[:2]
        if classes:
            part += "." + ".".join(classes)
        nth = node.nth_of_type()
        if nth > 1:
            part += f":nth-of-type({nth})"
        return part


_default = SelectorSynthesizer()


def synthesize(node: Optional[DomNode]) -> str:
    return _default.synthesize(node)


def text_preview(node: DomNode, limit: int = 30) -> str:
    text = _WS.sub(" ", node.inner_text()).strip()
    return text if len(text) < limit else text[:limit] + "..."


def element_details(node: Optional[DomNode]) -> Dict[str, Any]:
    if node is None:
        return {"type": "unknown", "tag": "unknown", "attributes": {}}

    tag = node.tag
    kind = "element"
    attrs: Dict[str, str] = {}
    get = node.get_attribute

    if tag == "button":
        kind = "button"
    elif tag == "a":
        kind = "link"
        if get("href"):
            attrs["href"] = get("href")
    elif tag == "img":
        kind = "image"
        for a in ("src", "alt"):
            if get(a):
                attrs[a] = get(a)
    elif tag in ("input", "textarea", "select"):
        kind = "input"
        input_type = (get("type") or "text") if tag == "input" else tag
        attrs["input_type"] = input_type
        if input_type in ("submit", "button"):
            kind = "button"
        for a in ("name", "placeholder"):
            if get(a):
                attrs[a] = get(a)
    elif tag == "form":
        kind = "form"
        for a in ("action", "method"):
            if get(a):
                attrs[a] = get(a)
    elif tag in TEXT_TAGS:
        kind = "text"

    for a in ("id", "class", "role", "aria-label", NAME_ATTRIBUTE, "title"):
        if get(a):
            attrs[a] = get(a)

    return {"type": kind, "tag": tag, "attributes": attrs}


def human_name(node: Optional[DomNode]) -> str:
    """Label shown to the admin; not unique and not part of the fingerprint."""
    if node is None:
        return "Unknown Element"
    for attr in (NAME_ATTRIBUTE, "aria-label", "title", "alt"):
        value = node.get_attribute(attr)
        if value:
            return value
    text = text_preview(node)
    if text:
        return text
    for attr in ("placeholder", "name"):
        value = node.get_attribute(attr)
        if value:
            return value
    if node.id:
        return f"#{node.id}"
    details = element_details(node)
    return f"{details['type']} ({details['tag']})"
