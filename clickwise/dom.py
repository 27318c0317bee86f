# clickwise/dom.py
# DomNode chains come from the browser bridge or from hand-built test trees
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)

# tag, #id, .class, [attr] and [attr="value"] parts of a compound selector
_PART = re.compile(
    r"""([a-zA-Z][\w-]*)|\#([\w-]+)|\.([\w-]+)|\[([\w:-]+)(?:=(?:"([^"]*)"|'([^']*)'|([^\]]*)))?\]"""
)

Compound = Tuple[Optional[str], Tuple[Tuple[str, Optional[str]], ...]]


@lru_cache(maxsize=128)
def _parse_selector_list(selector: str) -> Tuple[Compound, ...]:
    compounds = []
    for raw in selector.split(","):
        raw = raw.strip()
        if not raw:
            continue
        tag = None
        checks = []
        pos = 0
        while pos < len(raw):
            m = _PART.match(raw, pos)
            if not m:
                raise ValueError(f"unsupported selector: {selector!r}")
            t, ident, cls, attr, v1, v2, v3 = m.groups()
            if t:
                tag = t.lower()
            elif ident:
                checks.append(("id", ident))
            elif cls:
                checks.append((".class", cls))
            else:
                value = next((v for v in (v1, v2, v3) if v is not None), None)
                checks.append((attr.lower(), value))
            pos = m.end()
        compounds.append((tag, tuple(checks)))
    return tuple(compounds)


@dataclass(eq=False)
class DomNode:
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    parent: Optional["DomNode"] = None
    children: List["DomNode"] = field(default_factory=list)
    # snapshots carry the position instead of the siblings
    explicit_nth: Optional[int] = None

    def __post_init__(self):
        self.tag = self.tag.lower()
        for child in self.children:
            child.parent = self

    def __repr__(self) -> str:
        return f"<DomNode {self.tag} {self.attributes!r}>"

    # --- attributes ---------------------------------------------------

    @property
    def id(self) -> str:
        return self.attributes.get("id") or ""

    @property
    def classes(self) -> List[str]:
        return (self.attributes.get("class") or "").split()

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    # --- tree ---------------------------------------------------------

    def append(self, child: "DomNode") -> "DomNode":
        child.parent = self
        self.children.append(child)
        return child

    def nth_of_type(self) -> int:
        """1-based position among same-tag siblings."""
        if self.explicit_nth is not None:
            return self.explicit_nth
        if self.parent is None:
            return 1
        n = 0
        for sib in self.parent.children:
            if sib.tag == self.tag:
                n += 1
            if sib is self:
                return n
        return 1

    def inner_text(self) -> str:
        parts = [self.text] if self.text else []
        parts.extend(c.inner_text() for c in self.children)
        return " ".join(p for p in parts if p)

    # --- matching -----------------------------------------------------

    def matches(self, selector: str) -> bool:
        for tag, checks in _parse_selector_list(selector):
            if tag and tag != self.tag:
                continue
            ok = True
            for name, value in checks:
                if name == "id":
                    ok = self.id == value
                elif name == ".class":
                    ok = value in self.classes
                elif value is None:
                    ok = self.has_attribute(name)
                else:
                    ok = self.attributes.get(name) == value
                if not ok:
                    break
            if ok:
                return True
        return False

    def closest(self, selector: str) -> Optional["DomNode"]:
        node: Optional[DomNode] = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    # --- snapshots ----------------------------------------------------

    @classmethod
    def from_snapshot(cls, payload: Dict[str, Any]) -> Optional["DomNode"]:
        """Rebuild a target node and its ancestors from bridge JSON.

        ``payload["path"]`` lists the target first and the root last; each
        entry has ``tag``, ``attrs``, optional ``nth`` and ``text``.
        """
        path = payload.get("path") or []
        nodes: List[DomNode] = []
        for entry in path:
            if not isinstance(entry, dict) or not entry.get("tag"):
                break
            attrs = {str(k): str(v) for k, v in (entry.get("attrs") or {}).items() if v is not None}
            nth = entry.get("nth")
            nodes.append(cls(
                tag=str(entry["tag"]),
                attributes=attrs,
                text=str(entry.get("text") or ""),
                explicit_nth=int(nth) if isinstance(nth, int) and nth > 0 else None,
            ))
        for child, parent in zip(nodes, nodes[1:]):
            child.parent = parent
        return nodes[0] if nodes else None


@dataclass
class Signal:
    type: str
    target: Optional[DomNode] = None
    name: str = ""
    detail: Any = None
    scroll_top: float = 0.0
    scroll_height: float = 0.0
    viewport_height: float = 0.0
    url: Optional[str] = None


Listener = Callable[[Signal], None]


class EventTarget:
    """Listener registry the recorder and tracker attach to."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        # recorder currently holding the recording flag for this page
        self.owner: Optional[Any] = None

    def add_listener(self, type: str, listener: Listener) -> None:
        bucket = self._listeners.setdefault(type, [])
        if listener not in bucket:
            bucket.append(listener)

    def remove_listener(self, type: str, listener: Listener) -> None:
        bucket = self._listeners.get(type)
        if bucket and listener in bucket:
            bucket.remove(listener)
            if not bucket:
                del self._listeners[type]

    def listener_count(self, type: Optional[str] = None) -> int:
        if type is not None:
            return len(self._listeners.get(type, ()))
        return sum(len(b) for b in self._listeners.values())

    def dispatch(self, signal: Signal) -> None:
        for listener in list(self._listeners.get(signal.type, ())):
            try:
                listener(signal)
            except Exception:
                log.exception("listener failed for %s signal", signal.type)
