"""
Evaluation service: looks flags up, evaluates them and records the result.
"""

import time
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from shared.errors import SwitchboardException
from shared.logging import get_logger
from .engine.evaluator import FlagEvaluator
from .engine.models import EvaluationResult, Flag
from .recording.recorder import EvaluationRecorder
from .recording.sinks import EvaluationEvent
from .store.memory import FlagStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class EvaluationService:
    """Evaluates stored flags for a project."""

    def __init__(
        self,
        store: FlagStore,
        recorder: Optional[EvaluationRecorder] = None,
        evaluator: Optional[FlagEvaluator] = None,
        metrics: Optional["MetricsCollector"] = None
    ):
        self.store = store
        self.recorder = recorder
        self.evaluator = evaluator or FlagEvaluator()
        self.metrics = metrics
        self.logger = get_logger("flags.evaluation")

    def evaluate_flag(
        self,
        project_id: str,
        environment: str,
        flag_key: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Evaluate one flag and return ``{"key", "value"}``.

        Raises:
            FlagNotFound: no flag ``flag_key`` in the project.
            EnvironmentNotFound: the flag has no settings for ``environment``.
        """
        context = dict(context or {})
        start_time = time.perf_counter()
        try:
            flag = self.store.get_flag(project_id, flag_key)
            result = self.evaluator.evaluate(flag, environment, context)
        except SwitchboardException as e:
            self._record_failure(e)
            raise
        finally:
            self._observe("evaluate", start_time)

        self._record(project_id, flag, result, context)
        self.logger.debug(
            "Flag evaluated",
            project_id=project_id,
            flag_key=flag_key,
            environment=environment,
            reason=result.reason,
            rule_name=result.rule_name
        )
        return result.to_wire()

    def evaluate_all_flags(
        self,
        project_id: str,
        environment: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Evaluate every flag of the project; failing flags are left out."""
        context = dict(context or {})
        start_time = time.perf_counter()
        flags = {flag.key: flag for flag in self.store.list_flags(project_id)}
        bulk = self.evaluator.evaluate_all_detailed(flags.values(), environment, context)
        self._observe("evaluate_all", start_time)

        for flag_key, result in bulk.results.items():
            self._record(project_id, flags[flag_key], result, context)
        for error in bulk.failures.values():
            self._record_failure(error)

        if bulk.failures:
            self.logger.warning(
                "Bulk evaluation skipped flags",
                project_id=project_id,
                environment=environment,
                skipped=sorted(bulk.failures)
            )
        return bulk.values

    def _record(self, project_id: str, flag: Flag, result: EvaluationResult, context: Dict[str, Any]):
        if self.metrics:
            self.metrics.increment_counter(
                "flag_evaluations_total", environment=result.environment, reason=result.reason
            )
        if self.recorder is None:
            return
        user_id = context.get("userId")
        self.recorder.record(EvaluationEvent(
            project=project_id,
            flag_key=flag.key,
            environment=result.environment,
            result=result.value,
            user_id=str(user_id) if user_id else None,
            context=context,
            sdk_version=context.get("sdkVersion"),
            sdk_type=context.get("sdkType"),
            client_ip=context.get("clientIP")
        ))

    def _record_failure(self, error: Exception):
        if self.metrics:
            code = getattr(error, "code", type(error).__name__)
            self.metrics.increment_counter("flag_evaluation_failures_total", error_code=code)

    def _observe(self, operation: str, start_time: float):
        if self.metrics:
            self.metrics.observe_histogram(
                "flag_evaluation_duration_seconds",
                time.perf_counter() - start_time,
                operation=operation
            )
