"""Reply rules applied to inbound messages."""

from whatsbot.rules.replies import DEFAULT_RULES, ReplyRule, ReplyRuleSet
from whatsbot.rules.zodiac import detect_zodiac_signs

__all__ = ["ReplyRule", "ReplyRuleSet", "DEFAULT_RULES", "detect_zodiac_signs"]
