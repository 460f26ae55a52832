"""
Flag evaluation engine package.

Turns an immutable flag snapshot plus a runtime context into one value:
percentage rollout bucketing, segment targeting, scheduled activation and
multivariate default resolution.

Modules of interest:
- models: Flag, EnvironmentSettings, rule variants, Variation, results.
- bucketing: Cross-SDK stable hash used for percentage rollouts.
- matcher: Single-rule matching.
- evaluator: Rule ordering, default resolution and the FlagEvaluator.
"""

from .bucketing import bucket
from .evaluator import FlagEvaluator, evaluate_rules, resolve_default
from .matcher import RuleMatch, match_rule
from .models import (
    BulkEvaluation, DefaultRule, EnvironmentSettings, EvaluationResult, Flag, FlagType,
    PercentageRule, Rule, RuleType, ScheduledRule, SegmentRule, UnsupportedRule, Variation
)

__all__ = [
    "BulkEvaluation",
    "DefaultRule",
    "EnvironmentSettings",
    "EvaluationResult",
    "Flag",
    "FlagEvaluator",
    "FlagType",
    "PercentageRule",
    "Rule",
    "RuleMatch",
    "RuleType",
    "ScheduledRule",
    "SegmentRule",
    "UnsupportedRule",
    "Variation",
    "bucket",
    "evaluate_rules",
    "match_rule",
    "resolve_default",
]
