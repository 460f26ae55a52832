"""
Rule matching for the flag evaluation engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from shared.logging import get_logger
from .bucketing import bucket, rollout_seed
from .models import (
    DefaultRule, PercentageRule, Rule, ScheduledRule, SegmentRule, UnsupportedRule
)

logger = get_logger("flags.matcher")

_MISSING = object()


@dataclass(frozen=True)
class RuleMatch:
    """Result of matching one rule against a context."""
    matched: bool
    value: Any = None


NO_MATCH = RuleMatch(matched=False, value=None)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion between booleans and numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def match_rule(rule: Rule, context: Mapping[str, Any], flag_key: str, now: datetime) -> RuleMatch:
    """Match ``rule`` against ``context``.

    Percentage, segment and scheduled rules emit ``True`` when they match;
    default rules emit their payload. Unsupported rules never match.
    """
    if isinstance(rule, PercentageRule):
        seed = rollout_seed(context.get("userId"), flag_key)
        return RuleMatch(matched=bucket(seed) < rule.percentage, value=True)

    if isinstance(rule, SegmentRule):
        for attribute, expected in rule.attributes.items():
            actual = context.get(attribute, _MISSING)
            if actual is _MISSING or not strict_equals(actual, expected):
                return RuleMatch(matched=False, value=True)
        return RuleMatch(matched=True, value=True)

    if isinstance(rule, ScheduledRule):
        started = now >= rule.start_date
        not_ended = rule.end_date is None or now <= rule.end_date
        return RuleMatch(matched=started and not_ended, value=True)

    if isinstance(rule, DefaultRule):
        return RuleMatch(matched=True, value=rule.payload)

    if isinstance(rule, UnsupportedRule):
        logger.warning(
            "Skipping unsupported rule",
            flag_key=flag_key,
            rule_type=rule.type,
            rule_name=rule.name,
            error=rule.error
        )
    else:
        logger.warning("Unknown rule object", flag_key=flag_key, rule=repr(rule))
    return NO_MATCH
