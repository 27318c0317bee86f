# clickwise/rules.py
# structural rules gate custom event names; managed rules are admin-tracked records
import logging
import re
from functools import lru_cache
from typing import Any, Iterable, List, Literal, Optional, Pattern, Sequence

import orjson
from pydantic import BaseModel, ValidationError

from clickwise.events import ELEMENT_KINDS, CandidateEvent, TrackedEvent

log = logging.getLogger(__name__)

RuleType = Literal["prefix", "contains", "exact", "regex", "pattern"]

DEFAULT_PREFIXES = ("kb-", "wc-", "custom-")


class Rule(BaseModel):
    type: RuleType
    value: str
    description: str = ""


def _coerce(item: Any) -> Optional[Rule]:
    if isinstance(item, Rule):
        return item
    if isinstance(item, str):
        item = item.strip()
        return Rule(type="prefix", value=item) if item else None
    if isinstance(item, dict):
        if not item.get("type") or not item.get("value"):
            return None
        try:
            return Rule.model_validate(item)
        except ValidationError:
            log.debug("dropping unknown rule %r", item)
            return None
    return None


def parse_rules(raw: Any, use_defaults: bool = False) -> List[Rule]:
    """Normalise rule input once, at the boundary.

    Accepts a list of rules, dicts or bare strings (legacy prefixes), or the
    settings text the plugin stores: a JSON array of rule objects, or
    prefixes separated by newlines or commas.
    """
    if isinstance(raw, (bytes, str)):
        text = raw.decode() if isinstance(raw, bytes) else raw
        items: Iterable[Any] = ()
        if text.strip():
            try:
                decoded = orjson.loads(text)
            except orjson.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                items = decoded
            elif "\n" in text or "\r" in text:
                items = re.split(r"\r\n|\r|\n", text)
            else:
                items = text.split(",")
    else:
        items = raw or ()

    rules = [r for r in (_coerce(i) for i in items) if r is not None]
    if not rules and use_defaults:
        rules = [Rule(type="prefix", value=p) for p in DEFAULT_PREFIXES]
    return rules


@lru_cache(maxsize=256)
def _compile(source: str) -> Optional[Pattern]:
    try:
        return re.compile(source)
    except re.error as e:
        log.debug("invalid rule pattern %r: %s", source, e)
        return None


def wildcard_to_regex(value: str) -> str:
    return "^" + value.replace("*", ".*") + "$"


def rule_matches(event_name: str, rule: Rule) -> bool:
    value = rule.value
    if rule.type == "prefix":
        return event_name.startswith(value)
    if rule.type == "contains":
        return value in event_name
    if rule.type == "exact":
        return event_name == value
    if rule.type == "regex":
        pattern = _compile(value)
    else:
        pattern = _compile(wildcard_to_regex(value))
    # a rule that does not compile never matches
    return bool(pattern and pattern.search(event_name))


def first_match(event_name: str, rules: Iterable[Any]) -> Optional[Rule]:
    for item in rules:
        rule = _coerce(item)
        if rule is not None and rule_matches(event_name, rule):
            return rule
    return None


def matches(event_name: str, rules: Iterable[Any]) -> bool:
    return first_match(event_name, rules) is not None


def matches_managed_event(
    candidate: CandidateEvent, managed_rules: Sequence[TrackedEvent]
) -> Optional[TrackedEvent]:
    """First managed rule that claims the candidate, or None.

    Element kinds match when the rule selector is contained in the candidate
    selector, so extra structural context around the stable locator still
    matches. Named kinds match on equal names.
    """
    for rule in managed_rules:
        if rule.kind != candidate.kind:
            continue
        if candidate.kind in ELEMENT_KINDS:
            if rule.selector and candidate.selector and rule.selector in candidate.selector:
                return rule
        elif rule.name == candidate.display_name:
            return rule
    return None