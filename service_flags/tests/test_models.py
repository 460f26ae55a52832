"""
Unit tests for flag models and rule parsing.
"""

from datetime import datetime, timezone

import pytest

from service_flags.app.engine.models import (
    DefaultRule, EnvironmentSettings, Flag, FlagType, PercentageRule, RuleType,
    ScheduledRule, SegmentRule, UnsupportedRule, Variation, parse_timestamp,
    rule_from_dict, rule_to_dict
)
from shared.errors import InvalidRuleValue, ValidationError


class TestRuleFromDict:
    """Test cases for strict and lenient rule parsing."""

    def test_percentage_rule(self):
        rule = rule_from_dict({"type": "PERCENTAGE", "name": "rollout", "priority": 3, "value": 25})
        assert isinstance(rule, PercentageRule)
        assert rule.percentage == 25
        assert rule.priority == 3

    def test_segment_rule(self):
        rule = rule_from_dict({"type": "USER_SEGMENT", "name": "beta", "value": {"plan": "pro"}})
        assert isinstance(rule, SegmentRule)
        assert rule.value == {"plan": "pro"}

    def test_segment_attributes_are_read_only(self):
        rule = rule_from_dict({"type": "USER_SEGMENT", "name": "beta", "value": {"plan": "pro"}})
        with pytest.raises(TypeError):
            rule.attributes["plan"] = "free"

    def test_scheduled_rule(self):
        rule = rule_from_dict({
            "type": "SCHEDULED",
            "name": "launch",
            "value": {"startDate": "2024-01-01", "endDate": "2024-01-31T23:59:59Z"}
        })
        assert isinstance(rule, ScheduledRule)
        assert rule.start_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert rule.end_date == datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc)

    def test_default_rule_without_name(self):
        rule = rule_from_dict({"type": "DEFAULT", "value": "blue"})
        assert isinstance(rule, DefaultRule)
        assert rule.value == "blue"
        assert rule.name is None

    @pytest.mark.parametrize("value", [-1, 101, "50", True, None])
    def test_invalid_percentage(self, value):
        with pytest.raises(InvalidRuleValue) as exc_info:
            rule_from_dict({"type": "PERCENTAGE", "name": "rollout", "value": value})
        assert exc_info.value.code == "INVALID_RULE_VALUE"
        assert exc_info.value.rule_type == "PERCENTAGE"

    def test_invalid_segment(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "USER_SEGMENT", "name": "beta", "value": ["pro"]})

    def test_scheduled_requires_start_date(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "SCHEDULED", "name": "launch", "value": {"endDate": "2024-01-01"}})

    def test_scheduled_end_before_start(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({
                "type": "SCHEDULED",
                "name": "launch",
                "value": {"startDate": "2024-02-01", "endDate": "2024-01-01"}
            })

    def test_unparseable_timestamp(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "SCHEDULED", "name": "launch", "value": {"startDate": "soon"}})

    def test_default_requires_value(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "DEFAULT"})

    def test_name_required(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "PERCENTAGE", "value": 10})

    def test_negative_priority(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "PERCENTAGE", "name": "rollout", "priority": -1, "value": 10})

    def test_unknown_type_strict(self):
        with pytest.raises(InvalidRuleValue):
            rule_from_dict({"type": "GEO", "name": "eu", "value": "EU"})

    def test_unknown_type_lenient(self):
        rule = rule_from_dict({"type": "GEO", "name": "eu", "priority": 5, "value": "EU"}, strict=False)
        assert isinstance(rule, UnsupportedRule)
        assert rule.type == "GEO"
        assert rule.priority == 5

    def test_malformed_payload_lenient(self):
        rule = rule_from_dict({"type": "PERCENTAGE", "name": "rollout", "value": 150}, strict=False)
        assert isinstance(rule, UnsupportedRule)
        assert rule.type == "PERCENTAGE"
        assert "percentage" in rule.error

    def test_non_mapping_lenient(self):
        rule = rule_from_dict("PERCENTAGE", strict=False)
        assert isinstance(rule, UnsupportedRule)

    def test_to_dict(self):
        rule = PercentageRule(name="rollout", percentage=10, priority=2)
        assert rule_to_dict(rule) == {"type": "PERCENTAGE", "name": "rollout", "priority": 2, "value": 10}


class TestParseTimestamp:
    """Test cases for rule timestamps."""

    def test_date_only_is_utc_midnight(self):
        assert parse_timestamp("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_offset_is_normalized(self):
        parsed = parse_timestamp("2024-01-15T02:00:00+02:00")
        assert parsed == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_naive_datetime(self):
        assert parse_timestamp(datetime(2024, 1, 15, 12)) == datetime(2024, 1, 15, 12, tzinfo=timezone.utc)


class TestEnvironmentSettings:
    """Test cases for environment settings."""

    def test_duplicate_variation_keys(self):
        with pytest.raises(ValidationError):
            EnvironmentSettings(variations=(Variation("a", 1), Variation("a", 2)))

    def test_default_must_reference_variation(self):
        with pytest.raises(ValidationError):
            EnvironmentSettings(variations=(Variation("a", 1),), default_variation="b")

    @pytest.mark.parametrize("enabled", ["false", "true", 1, 0])
    def test_enabled_must_be_boolean(self, enabled):
        with pytest.raises(ValidationError):
            EnvironmentSettings.from_dict({"enabled": enabled})

    @pytest.mark.parametrize("document", [
        True,
        ["enabled"],
        {"rules": "PERCENTAGE"},
        {"rules": {"type": "DEFAULT", "value": 1}},
        {"variations": 3},
        {"variations": [True]},
    ])
    def test_malformed_document(self, document):
        with pytest.raises(ValidationError):
            EnvironmentSettings.from_dict(document, strict=False)

    def test_missing_fields_use_defaults(self):
        settings = EnvironmentSettings.from_dict({"rules": None, "variations": None})
        assert settings.enabled is False
        assert settings.rules == ()
        assert settings.variations == ()

    def test_from_dict(self):
        settings = EnvironmentSettings.from_dict({
            "enabled": True,
            "rules": [{"type": "DEFAULT", "value": "x"}],
            "variations": [{"key": "x", "value": "X"}],
            "defaultVariation": "x"
        })
        assert settings.enabled is True
        assert settings.get_variation("x").value == "X"
        assert settings.default_variation == "x"
        assert len(settings.rules) == 1


class TestFlag:
    """Test cases for flag snapshots."""

    @pytest.mark.parametrize("key", ["", "has space", "a/b", "x" * 101])
    def test_invalid_key(self, key):
        with pytest.raises(ValidationError):
            Flag(key=key)

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            Flag(key="f", type="DATE")

    def test_from_dict_round_trip(self):
        document = {
            "key": "checkout-color",
            "type": "STRING",
            "tags": ["ui"],
            "environments": {
                "production": {
                    "enabled": True,
                    "rules": [{"type": "USER_SEGMENT", "name": "pro", "priority": 1, "value": {"plan": "pro"}}],
                    "variations": [{"key": "blue", "value": "#00f"}],
                    "defaultVariation": "blue"
                },
                "staging": {"enabled": False}
            }
        }
        flag = Flag.from_dict(document, project_id="shop")
        assert flag.type == FlagType.STRING
        assert flag.project_id == "shop"
        assert flag.name == "checkout-color"
        assert flag.environment_names == ["production", "staging"]
        assert flag.environments["production"].rules[0].type == RuleType.USER_SEGMENT
        assert Flag.from_dict(flag.to_dict()) == flag

    def test_from_dict_rejects_scalar_environment(self):
        with pytest.raises(ValidationError):
            Flag.from_dict({"key": "f", "environments": {"production": True}}, strict=False)

    def test_from_dict_empty_environment(self):
        flag = Flag.from_dict({"key": "f", "environments": {"production": None}})
        assert flag.environments["production"].enabled is False

    def test_environments_are_read_only(self):
        flag = Flag(key="f", environments={"dev": EnvironmentSettings()})
        with pytest.raises(TypeError):
            flag.environments["prod"] = EnvironmentSettings()
