"""
Flag data models for the flag evaluation engine.

Snapshots are immutable: every container is a tuple or a read-only mapping,
and dataclasses are frozen. Management operations build new snapshots with
``dataclasses.replace`` instead of mutating the ones handed to the engine.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import InvalidRuleValue, ValidationError

FLAG_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
FLAG_KEY_MAX_LENGTH = 100


class FlagType(str, Enum):
    """Declared value type of a flag."""
    BOOLEAN = "BOOLEAN"
    STRING = "STRING"
    NUMBER = "NUMBER"
    JSON = "JSON"


class RuleType(str, Enum):
    """Rule types."""
    PERCENTAGE = "PERCENTAGE"
    USER_SEGMENT = "USER_SEGMENT"
    SCHEDULED = "SCHEDULED"
    DEFAULT = "DEFAULT"


def parse_timestamp(value: Any, rule_type: str = RuleType.SCHEDULED.value) -> datetime:
    """Parse a rule timestamp into an aware UTC datetime.

    Accepts datetimes, dates and ISO-8601 strings. Date-only and naive
    values are read as UTC; a trailing ``Z`` is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidRuleValue(rule_type, f"unparseable timestamp {value!r}")
    else:
        raise InvalidRuleValue(rule_type, f"expected a timestamp, got {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _check_rule_header(rule_type: RuleType, name: Optional[str], priority: Any) -> None:
    if rule_type != RuleType.DEFAULT and not (isinstance(name, str) and name.strip()):
        raise InvalidRuleValue(rule_type.value, "name is required")
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
        raise InvalidRuleValue(rule_type.value, f"priority must be a non-negative integer, got {priority!r}")


@dataclass(frozen=True)
class PercentageRule:
    """Roll out to a percentage of contexts, bucketed by user id."""
    name: str
    percentage: float
    priority: int = 0

    type = RuleType.PERCENTAGE

    def __post_init__(self):
        _check_rule_header(self.type, self.name, self.priority)
        value = self.percentage
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
            raise InvalidRuleValue(self.type.value, f"percentage must be a number in [0, 100], got {value!r}")

    @property
    def value(self) -> float:
        return self.percentage


@dataclass(frozen=True)
class SegmentRule:
    """Match contexts whose attributes equal every configured value."""
    name: str
    attributes: Mapping[str, Any]
    priority: int = 0

    type = RuleType.USER_SEGMENT

    def __post_init__(self):
        _check_rule_header(self.type, self.name, self.priority)
        if not isinstance(self.attributes, Mapping):
            raise InvalidRuleValue(self.type.value, f"segment must be a mapping, got {self.attributes!r}")
        if not all(isinstance(key, str) for key in self.attributes):
            raise InvalidRuleValue(self.type.value, "segment attribute names must be strings")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def value(self) -> Dict[str, Any]:
        return dict(self.attributes)


@dataclass(frozen=True)
class ScheduledRule:
    """Active between ``start_date`` and the optional ``end_date``, inclusive."""
    name: str
    start_date: datetime
    end_date: Optional[datetime] = None
    priority: int = 0

    type = RuleType.SCHEDULED

    def __post_init__(self):
        _check_rule_header(self.type, self.name, self.priority)
        if self.start_date is None:
            raise InvalidRuleValue(self.type.value, "startDate is required")
        object.__setattr__(self, "start_date", parse_timestamp(self.start_date))
        if self.end_date is not None:
            object.__setattr__(self, "end_date", parse_timestamp(self.end_date))
            if self.end_date < self.start_date:
                raise InvalidRuleValue(self.type.value, "endDate must not be before startDate")

    @property
    def value(self) -> Dict[str, Any]:
        payload = {"startDate": self.start_date.isoformat()}
        if self.end_date is not None:
            payload["endDate"] = self.end_date.isoformat()
        return payload


@dataclass(frozen=True)
class DefaultRule:
    """Always matches and emits its configured payload."""
    payload: Any
    name: Optional[str] = None
    priority: int = 0

    type = RuleType.DEFAULT

    def __post_init__(self):
        _check_rule_header(self.type, self.name, self.priority)

    @property
    def value(self) -> Any:
        return self.payload


@dataclass(frozen=True)
class UnsupportedRule:
    """Placeholder for a stored rule that cannot be evaluated.

    Only produced by lenient snapshot parsing; the matcher never matches it.
    """
    type: str
    name: Optional[str] = None
    priority: int = 0
    value: Any = None
    error: Optional[str] = None


Rule = Union[PercentageRule, SegmentRule, ScheduledRule, DefaultRule, UnsupportedRule]


def rule_from_dict(data: Mapping[str, Any], strict: bool = True) -> Rule:
    """Build a rule variant from its document form ``{type, name, priority, value}``.

    With ``strict=False`` an unknown type or malformed payload yields an
    :class:`UnsupportedRule` instead of raising.
    """
    if not isinstance(data, Mapping):
        if strict:
            raise InvalidRuleValue("UNKNOWN", f"rule must be a mapping, got {data!r}")
        return UnsupportedRule(type="UNKNOWN", value=data, error="rule is not a mapping")

    raw_type = data.get("type")
    name = data.get("name")
    priority = data.get("priority", 0)
    value = data.get("value")

    try:
        rule_type = RuleType(raw_type)
    except ValueError:
        if strict:
            raise InvalidRuleValue(str(raw_type), "unknown rule type")
        return UnsupportedRule(type=str(raw_type), name=name, priority=_lenient_priority(priority),
                               value=value, error="unknown rule type")

    try:
        if rule_type == RuleType.PERCENTAGE:
            return PercentageRule(name=name, percentage=value, priority=priority)
        if rule_type == RuleType.USER_SEGMENT:
            return SegmentRule(name=name, attributes=value, priority=priority)
        if rule_type == RuleType.SCHEDULED:
            if not isinstance(value, Mapping) or not value.get("startDate"):
                raise InvalidRuleValue(rule_type.value, "expected {startDate, endDate?}")
            return ScheduledRule(name=name, start_date=value["startDate"],
                                 end_date=value.get("endDate"), priority=priority)
        if "value" not in data:
            raise InvalidRuleValue(rule_type.value, "value is required")
        return DefaultRule(payload=value, name=name, priority=priority)
    except InvalidRuleValue as e:
        if strict:
            raise
        return UnsupportedRule(type=rule_type.value, name=name, priority=_lenient_priority(priority),
                               value=value, error=e.message)


def _lenient_priority(priority: Any) -> int:
    if isinstance(priority, int) and not isinstance(priority, bool) and priority >= 0:
        return priority
    return 0


def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    """Document form of a rule."""
    rule_type = rule.type.value if isinstance(rule.type, RuleType) else rule.type
    data: Dict[str, Any] = {"type": rule_type, "priority": rule.priority, "value": rule.value}
    if rule.name is not None:
        data["name"] = rule.name
    return data


@dataclass(frozen=True)
class Variation:
    """One named value of a multivariate flag."""
    key: str
    value: Any
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Variation":
        if not isinstance(data, Mapping) or not data.get("key"):
            raise ValidationError("Variation key is required", {"variation": data})
        if "value" not in data:
            raise ValidationError(f"Variation '{data['key']}' requires a value")
        return cls(key=str(data["key"]), value=data["value"], description=data.get("description"))

    def to_dict(self) -> Dict[str, Any]:
        data = {"key": self.key, "value": self.value}
        if self.description is not None:
            data["description"] = self.description
        return data


def _document_list(data: Mapping[str, Any], field_name: str) -> Sequence[Any]:
    items = data.get(field_name)
    if items is None:
        return ()
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise ValidationError(f"{field_name} must be a list", {field_name: items})
    return items


@dataclass(frozen=True)
class EnvironmentSettings:
    """Per-environment settings of a flag."""
    enabled: bool = False
    rules: Tuple[Rule, ...] = ()
    value: Any = None
    variations: Tuple[Variation, ...] = ()
    default_variation: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "variations", tuple(self.variations))

        keys = [variation.key for variation in self.variations]
        if len(keys) != len(set(keys)):
            raise ValidationError("Variation keys must be unique", {"variations": keys})
        if self.default_variation and self.default_variation not in keys:
            raise ValidationError(
                "Default variation must reference an existing variation key",
                {"default_variation": self.default_variation, "variations": keys}
            )

    def get_variation(self, key: str) -> Optional[Variation]:
        for variation in self.variations:
            if variation.key == key:
                return variation
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = True) -> "EnvironmentSettings":
        """Build settings from their document form.

        Raises:
            ValidationError: the document, ``enabled``, ``rules`` or
                ``variations`` has the wrong shape.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Environment settings must be a mapping", {"settings": data})
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ValidationError("enabled must be a boolean", {"enabled": enabled})
        return cls(
            enabled=enabled,
            rules=tuple(rule_from_dict(rule, strict=strict) for rule in _document_list(data, "rules")),
            value=data.get("value"),
            variations=tuple(Variation.from_dict(v) for v in _document_list(data, "variations")),
            default_variation=data.get("defaultVariation") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "rules": [rule_to_dict(rule) for rule in self.rules],
            "value": self.value,
            "variations": [variation.to_dict() for variation in self.variations],
            "defaultVariation": self.default_variation,
        }


@dataclass(frozen=True)
class Flag:
    """A typed, project-scoped toggle with per-environment settings.

    ``environments`` keeps the declared order of environment names.
    """
    key: str
    type: FlagType = FlagType.BOOLEAN
    environments: Mapping[str, EnvironmentSettings] = field(default_factory=dict)
    project_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.key, str) or not FLAG_KEY_PATTERN.match(self.key):
            raise ValidationError(
                "Flag key can only contain letters, numbers, dashes, dots, and underscores",
                {"key": self.key}
            )
        if len(self.key) > FLAG_KEY_MAX_LENGTH:
            raise ValidationError(
                f"Flag key cannot be more than {FLAG_KEY_MAX_LENGTH} characters", {"key": self.key}
            )
        try:
            object.__setattr__(self, "type", FlagType(self.type))
        except ValueError:
            raise ValidationError(f"Unknown flag type {self.type!r}", {"key": self.key})
        object.__setattr__(self, "environments", MappingProxyType(dict(self.environments)))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def environment_names(self) -> List[str]:
        return list(self.environments)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], project_id: Optional[str] = None,
                  strict: bool = True) -> "Flag":
        """Build a flag snapshot from its document form.

        ``strict`` is the write path: malformed rules raise
        :class:`InvalidRuleValue`. Snapshot loading passes ``strict=False``.
        """
        environments = data.get("environments") or {}
        if not isinstance(environments, Mapping):
            raise ValidationError("environments must be a mapping of name to settings")
        return cls(
            key=data.get("key"),
            type=data.get("type", FlagType.BOOLEAN.value),
            environments={
                str(name): EnvironmentSettings.from_dict({} if settings is None else settings, strict=strict)
                for name, settings in environments.items()
            },
            project_id=project_id if project_id is not None else data.get("project"),
            name=data.get("name") or data.get("key"),
            description=data.get("description"),
            tags=tuple(data.get("tags") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "project": self.project_id,
            "tags": list(self.tags),
            "environments": {name: settings.to_dict() for name, settings in self.environments.items()},
        }


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one flag."""
    key: str
    value: Any
    environment: str
    reason: str
    rule_name: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value}


@dataclass
class BulkEvaluation:
    """Outcome of evaluating every flag of a project."""
    results: Dict[str, EvaluationResult] = field(default_factory=dict)
    failures: Dict[str, Exception] = field(default_factory=dict)

    @property
    def values(self) -> Dict[str, Any]:
        return {key: result.value for key, result in self.results.items()}
