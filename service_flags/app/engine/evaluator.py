"""
Flag evaluation engine.

Evaluation is synchronous and pure over the snapshot it is handed: no
I/O, no shared mutable state, so evaluators can be shared freely between
concurrent requests.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple

from shared.errors import EnvironmentNotFound
from shared.logging import get_logger
from .matcher import match_rule
from .models import (
    BulkEvaluation, EnvironmentSettings, EvaluationResult, Flag, FlagType, Rule
)

REASON_DISABLED = "DISABLED"
REASON_NO_RULES = "NO_RULES"
REASON_RULE_MATCH = "RULE_MATCH"
REASON_FALLTHROUGH = "FALLTHROUGH"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sort_rules(rules: Iterable[Rule]) -> list:
    """Order rules by descending priority; equal priorities keep declared order."""
    return sorted(rules, key=lambda rule: -rule.priority)


def evaluate_rules(
    rules: Sequence[Rule],
    context: Mapping[str, Any],
    flag_key: str,
    now: datetime
) -> Optional[Tuple[Rule, Any]]:
    """Return ``(rule, value)`` for the first matching rule, or None."""
    for rule in sort_rules(rules):
        result = match_rule(rule, context, flag_key, now)
        if result.matched:
            return rule, result.value
    return None


def resolve_default(settings: EnvironmentSettings, flag_type: FlagType) -> Any:
    """Fallback value when the environment is disabled or no rule matches.

    Boolean flags use the environment value (``False`` when unset).
    Multivariate flags use the default variation, else the first declared
    variation, else the environment value.
    """
    if flag_type == FlagType.BOOLEAN:
        return settings.value if settings.value is not None else False

    if settings.variations:
        default_key = settings.default_variation or settings.variations[0].key
        variation = settings.get_variation(default_key)
        return variation.value if variation is not None else None

    return settings.value


class FlagEvaluator:
    """Evaluates flag snapshots against contexts."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utc_now
        self.logger = get_logger("flags.evaluator")

    def evaluate(self, flag: Flag, environment: str, context: Optional[Mapping[str, Any]] = None) -> EvaluationResult:
        """Evaluate ``flag`` in ``environment`` for ``context``.

        Raises:
            EnvironmentNotFound: the flag has no settings for ``environment``.
        """
        context = context or {}
        settings = flag.environments.get(environment)
        if settings is None:
            raise EnvironmentNotFound(environment, flag.key)

        if not settings.enabled:
            return self._default(flag, environment, settings, REASON_DISABLED)

        if not settings.rules:
            return self._default(flag, environment, settings, REASON_NO_RULES)

        match = evaluate_rules(settings.rules, context, flag.key, self.clock())
        if match is not None:
            rule, value = match
            return EvaluationResult(
                key=flag.key,
                value=value,
                environment=environment,
                reason=REASON_RULE_MATCH,
                rule_name=rule.name
            )

        return self._default(flag, environment, settings, REASON_FALLTHROUGH)

    def evaluate_all_detailed(
        self,
        flags: Iterable[Flag],
        environment: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> BulkEvaluation:
        """Evaluate every flag; a failing flag is recorded and skipped."""
        bulk = BulkEvaluation()
        for flag in flags:
            try:
                bulk.results[flag.key] = self.evaluate(flag, environment, context)
            except Exception as e:
                bulk.failures[flag.key] = e
                self.logger.warning(
                    "Skipping flag that failed to evaluate",
                    flag_key=flag.key,
                    environment=environment,
                    error=str(e)
                )
        return bulk

    def evaluate_all(
        self,
        flags: Iterable[Flag],
        environment: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> dict:
        """Evaluate every flag and return ``{flag_key: value}`` for the successes."""
        return self.evaluate_all_detailed(flags, environment, context).values

    @staticmethod
    def _default(flag: Flag, environment: str, settings: EnvironmentSettings, reason: str) -> EvaluationResult:
        return EvaluationResult(
            key=flag.key,
            value=resolve_default(settings, flag.type),
            environment=environment,
            reason=reason
        )
