"""
Unit tests for the flag evaluator.
"""

from datetime import datetime, timezone

import pytest

from service_flags.app.engine.evaluator import (
    REASON_DISABLED, REASON_FALLTHROUGH, REASON_NO_RULES, REASON_RULE_MATCH,
    FlagEvaluator, evaluate_rules, resolve_default, sort_rules
)
from service_flags.app.engine.models import (
    DefaultRule, EnvironmentSettings, Flag, FlagType, PercentageRule, ScheduledRule,
    SegmentRule, UnsupportedRule, Variation
)
from shared.errors import EnvironmentNotFound


def fixed_clock(year, month, day):
    return lambda: datetime(year, month, day, 12, tzinfo=timezone.utc)


def make_flag(key="feature", flag_type=FlagType.BOOLEAN, **settings):
    return Flag(key=key, type=flag_type, environments={"production": EnvironmentSettings(**settings)})


class TestFlagEvaluator:
    """Test cases for FlagEvaluator."""

    @pytest.fixture
    def evaluator(self):
        """Create FlagEvaluator pinned to 2024-01-15."""
        return FlagEvaluator(clock=fixed_clock(2024, 1, 15))

    @pytest.fixture
    def color_variations(self):
        return (Variation("red", "#f00"), Variation("blue", "#00f"))

    def test_unknown_environment(self, evaluator):
        with pytest.raises(EnvironmentNotFound) as exc_info:
            evaluator.evaluate(make_flag(), "staging", {})
        assert exc_info.value.status_code == 404

    def test_disabled_ignores_rules(self, evaluator):
        flag = make_flag(enabled=False, value=True, rules=(DefaultRule(payload="ignored"),))
        result = evaluator.evaluate(flag, "production", {})
        assert result.value is True
        assert result.reason == REASON_DISABLED

    def test_disabled_boolean_without_value(self, evaluator):
        result = evaluator.evaluate(make_flag(enabled=False), "production", {})
        assert result.value is False

    def test_enabled_without_rules(self, evaluator):
        result = evaluator.evaluate(make_flag(enabled=True, value=True), "production", {})
        assert result.value is True
        assert result.reason == REASON_NO_RULES

    def test_highest_priority_rule_wins(self, evaluator):
        flag = make_flag(enabled=True, rules=(
            DefaultRule(payload="low", name="low", priority=1),
            DefaultRule(payload="high", name="high", priority=10),
        ))
        result = evaluator.evaluate(flag, "production", {})
        assert result.value == "high"
        assert result.rule_name == "high"
        assert result.reason == REASON_RULE_MATCH

    def test_equal_priorities_keep_declared_order(self, evaluator):
        flag = make_flag(enabled=True, rules=(
            DefaultRule(payload="first", name="first", priority=5),
            DefaultRule(payload="second", name="second", priority=5),
        ))
        assert evaluator.evaluate(flag, "production", {}).value == "first"

    def test_segment_requires_every_attribute(self, evaluator):
        rule = SegmentRule(name="pro-eu", attributes={"plan": "pro", "region": "eu"})
        flag = make_flag(enabled=True, value=False, rules=(rule,))
        assert evaluator.evaluate(flag, "production", {"plan": "pro", "region": "eu"}).value is True

        result = evaluator.evaluate(flag, "production", {"plan": "pro"})
        assert result.value is False
        assert result.reason == REASON_FALLTHROUGH

    def test_percentage_boundary(self, evaluator):
        # flag key "1" buckets to 49, "2" to 50
        rule = PercentageRule(name="half", percentage=50)
        assert evaluator.evaluate(make_flag("1", enabled=True, rules=(rule,)), "production").value is True
        assert evaluator.evaluate(make_flag("2", enabled=True, rules=(rule,)), "production").value is False

    def test_scheduled_follows_clock(self):
        rule = ScheduledRule(name="january", start_date="2024-01-01", end_date="2024-01-31")
        flag = make_flag(enabled=True, rules=(rule,))
        assert FlagEvaluator(clock=fixed_clock(2024, 1, 15)).evaluate(flag, "production").value is True
        assert FlagEvaluator(clock=fixed_clock(2024, 2, 1)).evaluate(flag, "production").value is False

    def test_unsupported_rule_falls_through(self, evaluator):
        flag = make_flag(enabled=True, rules=(
            UnsupportedRule(type="GEO", name="geo", priority=10),
            DefaultRule(payload="fallback", name="default", priority=0),
        ))
        assert evaluator.evaluate(flag, "production", {}).value == "fallback"

    def test_segment_outranks_lower_priority_default(self, evaluator):
        # the DEFAULT rule is declared first but has the lower priority
        flag = make_flag(enabled=True, rules=(
            DefaultRule(payload="A", name="default", priority=5),
            SegmentRule(name="beta", attributes={"beta": True}, priority=10),
        ))
        result = evaluator.evaluate(flag, "production", {"beta": True})
        assert result.value is True
        assert result.rule_name == "beta"
        assert result.reason == REASON_RULE_MATCH

    def test_unmatched_segment_falls_to_default_payload(self, evaluator):
        flag = make_flag(enabled=True, rules=(
            DefaultRule(payload="A", name="default", priority=5),
            SegmentRule(name="beta", attributes={"beta": True}, priority=10),
        ))
        result = evaluator.evaluate(flag, "production", {"beta": False})
        assert result.value == "A"
        assert result.rule_name == "default"
        assert result.reason == REASON_RULE_MATCH

    def test_percentage_tried_before_catch_all_default(self, evaluator):
        rules = (
            DefaultRule(payload="A", name="default", priority=0),
            PercentageRule(name="half", percentage=50, priority=10),
        )
        inside = evaluator.evaluate(make_flag("1", enabled=True, rules=rules), "production", {})
        assert inside.value is True
        assert inside.rule_name == "half"

        outside = evaluator.evaluate(make_flag("2", enabled=True, rules=rules), "production", {})
        assert outside.value == "A"
        assert outside.rule_name == "default"

    def test_multivariate_default_variation(self, evaluator, color_variations):
        flag = make_flag(flag_type=FlagType.STRING, enabled=True,
                         variations=color_variations, default_variation="blue")
        assert evaluator.evaluate(flag, "production").value == "#00f"

    def test_multivariate_first_variation(self, evaluator, color_variations):
        flag = make_flag(flag_type=FlagType.STRING, enabled=False, variations=color_variations)
        assert evaluator.evaluate(flag, "production").value == "#f00"

    def test_multivariate_without_variations(self, evaluator):
        flag = make_flag(flag_type=FlagType.NUMBER, enabled=True, value=7)
        assert evaluator.evaluate(flag, "production").value == 7

    def test_rule_payload_overrides_variations(self, evaluator, color_variations):
        flag = make_flag(flag_type=FlagType.STRING, enabled=True, variations=color_variations,
                         rules=(DefaultRule(payload="#0f0", name="green"),))
        assert evaluator.evaluate(flag, "production").value == "#0f0"

    def test_evaluation_is_idempotent(self, evaluator):
        flag = make_flag(enabled=True, rules=(PercentageRule(name="rollout", percentage=30),))
        context = {"userId": "user-7"}
        results = {evaluator.evaluate(flag, "production", context).value for _ in range(20)}
        assert len(results) == 1

    def test_context_is_not_mutated(self, evaluator):
        context = {"userId": "user-1", "plan": "pro"}
        flag = make_flag(enabled=True, rules=(SegmentRule(name="pro", attributes={"plan": "pro"}),))
        evaluator.evaluate(flag, "production", context)
        assert context == {"userId": "user-1", "plan": "pro"}


class TestBulkEvaluation:
    """Test cases for evaluating every flag at once."""

    def test_failing_flag_is_skipped(self):
        evaluator = FlagEvaluator()
        flags = [
            make_flag("on", enabled=True, value=True),
            Flag(key="other-env", environments={"staging": EnvironmentSettings(enabled=True)}),
            make_flag("off", enabled=False),
        ]
        bulk = evaluator.evaluate_all_detailed(flags, "production", {})
        assert bulk.values == {"on": True, "off": False}
        assert isinstance(bulk.failures["other-env"], EnvironmentNotFound)

    def test_evaluate_all_returns_values(self):
        flags = [make_flag("a", enabled=True, value=True), make_flag("b")]
        assert FlagEvaluator().evaluate_all(flags, "production") == {"a": True, "b": False}

    def test_empty_project(self):
        assert FlagEvaluator().evaluate_all([], "production") == {}


class TestHelpers:
    """Test cases for rule ordering and default resolution."""

    def test_sort_rules_is_stable(self):
        rules = [
            DefaultRule(payload=1, name="a", priority=1),
            DefaultRule(payload=2, name="b", priority=3),
            DefaultRule(payload=3, name="c", priority=1),
        ]
        assert [rule.name for rule in sort_rules(rules)] == ["b", "a", "c"]

    def test_evaluate_rules_no_match(self):
        rule = SegmentRule(name="pro", attributes={"plan": "pro"})
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert evaluate_rules([rule], {}, "f", now) is None

    def test_resolve_default_boolean_ignores_variations(self):
        settings = EnvironmentSettings(value=None, variations=(Variation("x", "X"),))
        assert resolve_default(settings, FlagType.BOOLEAN) is False
