"""
Evaluation recording package.

Hands "this flag was evaluated" events to an analytics sink without ever
blocking or failing the evaluation path. Sinks: in-memory, structured log
and Redis stream.
"""

from .recorder import EvaluationRecorder
from .sinks import (
    EvaluationEvent, InMemoryRecordingSink, LoggingRecordingSink, RecordingSink,
    RedisStreamRecordingSink
)

__all__ = [
    "EvaluationEvent",
    "EvaluationRecorder",
    "InMemoryRecordingSink",
    "LoggingRecordingSink",
    "RecordingSink",
    "RedisStreamRecordingSink",
]
