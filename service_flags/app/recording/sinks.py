"""
Destinations for evaluation records.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis

from shared.errors import ExternalServiceError
from shared.logging import get_logger


@dataclass(frozen=True)
class EvaluationEvent:
    """One evaluation, as handed to the analytics side channel.

    ``(project, flag_key)`` identifies the flag.
    """
    project: str
    flag_key: str
    environment: str
    result: Any
    user_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sdk_version: Optional[str] = None
    sdk_type: Optional[str] = None
    client_ip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class RecordingSink(Protocol):
    """Receives evaluation events."""

    async def record(self, event: EvaluationEvent) -> None: ...


class InMemoryRecordingSink:
    """Keeps events in a list; used locally and in tests."""

    def __init__(self):
        self.events: List[EvaluationEvent] = []

    async def record(self, event: EvaluationEvent) -> None:
        self.events.append(event)

    async def health_check(self) -> bool:
        return True


class LoggingRecordingSink:
    """Writes each event as a structured log line."""

    def __init__(self):
        self.logger = get_logger("flags.recording.log")

    async def record(self, event: EvaluationEvent) -> None:
        self.logger.info("Flag evaluated", **event.to_dict())

    async def health_check(self) -> bool:
        return True


class RedisStreamRecordingSink:
    """Appends events to a Redis stream for downstream analytics consumers."""

    def __init__(self, redis_url: str, stream: str = "flag-evaluations", maxlen: int = 100000):
        self.redis_url = redis_url
        self.stream = stream
        self.maxlen = maxlen
        self.logger = get_logger("flags.recording.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Connect to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
            self.logger.info("Redis recording sink started", stream=self.stream)
        except Exception as e:
            self.logger.error("Failed to start Redis recording sink", error=str(e))
            raise ExternalServiceError("redis", str(e))

    async def stop(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis recording sink stopped")

    async def record(self, event: EvaluationEvent) -> None:
        if self.redis is None:
            raise ExternalServiceError("redis", "recording sink not started")
        await self.redis.xadd(
            self.stream,
            {"event": json.dumps(event.to_dict(), default=str)},
            maxlen=self.maxlen,
            approximate=True
        )

    async def health_check(self) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
