"""Rule-based replies to inbound message text.

A rule pairs a trigger with a responder. The trigger returns a falsy value
when it does not apply, or a match (any truthy value) that is handed to the
responder. Rules are evaluated in order and the first match wins.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from whatsbot.rules.zodiac import detect_zodiac_signs

PING_COMMAND = "!ping"
PING_REPLY = "pong"


@dataclass(frozen=True)
class ReplyRule:
    name: str
    trigger: Callable[[str], Any]
    responder: Callable[[Any], str]


def _ping_trigger(text: str) -> bool:
    return text == PING_COMMAND


def _zodiac_responder(symbols: list[str]) -> str:
    return " ".join(symbols)


PING_RULE = ReplyRule(name="ping", trigger=_ping_trigger, responder=lambda _: PING_REPLY)
ZODIAC_RULE = ReplyRule(name="zodiac", trigger=detect_zodiac_signs, responder=_zodiac_responder)

# Exact-match commands before pattern detectors
DEFAULT_RULES = (PING_RULE, ZODIAC_RULE)


class ReplyRuleSet:
    """Ordered collection of reply rules."""

    def __init__(self, rules: Iterable[ReplyRule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def match(self, text: str) -> tuple[ReplyRule, str] | None:
        """Return the first applicable rule and its reply, or None."""
        for rule in self.rules:
            result = rule.trigger(text)
            if result:
                return rule, rule.responder(result)
        return None

    def evaluate(self, text: str) -> str | None:
        matched = self.match(text)
        return matched[1] if matched else None
