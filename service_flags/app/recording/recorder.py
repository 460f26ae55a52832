"""
Fire-and-forget evaluation recorder.

``record`` never blocks and never raises: events go onto a bounded queue
drained by a background task. A full queue, a stopped recorder or a failing
sink loses the event; the evaluation that produced it is unaffected.
"""

import asyncio
from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger
from .sinks import EvaluationEvent, RecordingSink

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class EvaluationRecorder:
    """Delivers evaluation events to a sink in the background."""

    def __init__(
        self,
        sink: RecordingSink,
        *,
        max_queue_size: int = 10000,
        drain_timeout: float = 5.0,
        metrics: Optional["MetricsCollector"] = None
    ):
        self.sink = sink
        self.max_queue_size = max_queue_size
        self.drain_timeout = drain_timeout
        self.metrics = metrics
        self.logger = get_logger("flags.recorder")
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self):
        """Start the delivery task on the running loop."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._worker = asyncio.create_task(self._run(), name="evaluation-recorder")
        self.logger.info("Evaluation recorder started", max_queue_size=self.max_queue_size)

    async def stop(self):
        """Drain queued events (bounded by ``drain_timeout``), then stop."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Evaluation recorder stopped with undelivered events",
                pending=self._queue.qsize()
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        self.logger.info("Evaluation recorder stopped")

    def record(self, event: EvaluationEvent) -> bool:
        """Queue ``event`` for delivery; returns False when it was dropped."""
        if self._queue is None or not self.running:
            self._dropped(event, "not_running")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped(event, "queue_full")
            return False
        if self.metrics:
            self.metrics.set_gauge("flag_evaluation_record_queue_size", self._queue.qsize())
        return True

    async def flush(self):
        """Wait until every queued event has been handed to the sink."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def _run(self):
        while True:
            event = await self._queue.get()
            try:
                await self.sink.record(event)
            except Exception as e:
                self.logger.error(
                    "Failed to record evaluation",
                    flag_key=event.flag_key,
                    environment=event.environment,
                    error=str(e)
                )
                if self.metrics:
                    self.metrics.increment_counter("flag_evaluation_record_failures_total")
            finally:
                self._queue.task_done()
                if self.metrics:
                    self.metrics.set_gauge("flag_evaluation_record_queue_size", self._queue.qsize())

    def _dropped(self, event: EvaluationEvent, reason: str):
        self.logger.debug(
            "Evaluation record dropped",
            flag_key=event.flag_key,
            environment=event.environment,
            reason=reason
        )
        if self.metrics:
            self.metrics.increment_counter("flag_evaluation_records_dropped_total", reason=reason)
