"""
Python SDK for the flag evaluation service.
"""

import json
import time
from typing import Any, Dict, Optional

import httpx

from shared.errors import SwitchboardException
from shared.logging import get_logger

SDK_TYPE = "python"
SDK_VERSION = "1.0.0"

_UNSET = object()


class FlagClientError(SwitchboardException):
    """The service could not produce an evaluation."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__("FLAG_CLIENT_ERROR", message, details, status_code=status_code or 502)


class _CacheEntry:
    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, ttl: float):
        self.value = value
        self.expires_at = time.monotonic() + ttl

    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class FlagClient:
    """Evaluates flags against the service, falling back to defaults on any failure.

    Values are cached per ``(flag key, context)`` for ``cache_ttl`` seconds.
    Concurrent misses for one key may both reach the service; the last
    answer wins, which is harmless because evaluation is idempotent.

    In offline mode no request is made: answers come from ``bootstrap`` or
    the defaults.
    """

    def __init__(
        self,
        api_key: str,
        environment: str,
        base_url: str = "http://localhost:8020/api",
        *,
        project_id: Optional[str] = None,
        default_flag_value: Any = False,
        enable_cache: bool = True,
        cache_ttl: float = 60.0,
        bootstrap: Optional[Dict[str, Any]] = None,
        offline: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.environment = environment
        self.base_url = base_url.rstrip("/")
        self.default_flag_value = default_flag_value
        self.enable_cache = enable_cache
        self.cache_ttl = cache_ttl
        self.bootstrap = bootstrap
        self.offline = offline
        self.logger = get_logger("flags.sdk")
        self._cache: Dict[str, _CacheEntry] = {}

        headers = {
            "X-API-Key": api_key,
            "X-SDK-Type": SDK_TYPE,
            "X-SDK-Version": SDK_VERSION,
        }
        if project_id:
            headers["X-Project-Id"] = project_id
        self._http = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "FlagClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def get_value(self, flag_key: str, context: Optional[Dict[str, Any]] = None,
                        default: Any = _UNSET) -> Any:
        """Evaluated value of ``flag_key``; never raises."""
        context = context or {}
        fallback = self.default_flag_value if default is _UNSET else default

        if self.offline:
            if self.bootstrap and flag_key in self.bootstrap:
                return self.bootstrap[flag_key]
            return fallback

        cache_key = self._cache_key(flag_key, context)
        if self.enable_cache:
            entry = self._cache.get(cache_key)
            if entry is not None and not entry.is_expired():
                return entry.value

        try:
            result = await self.evaluate_flag(flag_key, context)
        except Exception as e:
            self.logger.warning("Error evaluating flag", flag_key=flag_key, error=str(e))
            return fallback

        if self.enable_cache:
            self._cache[cache_key] = _CacheEntry(result["value"], self.cache_ttl)
        return result["value"]

    async def is_enabled(self, flag_key: str, context: Optional[Dict[str, Any]] = None,
                         default: Any = _UNSET) -> bool:
        return bool(await self.get_value(flag_key, context, default))

    async def get_all_flags(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Every flag value for ``context``; the bootstrap map when unavailable."""
        if self.offline:
            return dict(self.bootstrap or {})

        params = {key: str(value) for key, value in (context or {}).items() if value is not None}
        try:
            response = await self._http.get(f"{self.base_url}/sdk/{self.environment}/flags", params=params)
            return self._data(response) or {}
        except Exception as e:
            self.logger.warning("Error getting all flags", error=str(e))
            return dict(self.bootstrap or {})

    async def evaluate_flag(self, flag_key: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Ask the service to evaluate ``flag_key``.

        Raises:
            FlagClientError: transport failure or a non-success response.
        """
        try:
            response = await self._http.post(
                f"{self.base_url}/sdk/{self.environment}/evaluate",
                json={"flagKey": flag_key, "context": context or {}}
            )
        except httpx.HTTPError as e:
            raise FlagClientError(f"Failed to evaluate flag: {e}")
        data = self._data(response)
        if not isinstance(data, dict) or "value" not in data:
            raise FlagClientError("Malformed evaluation response", response.status_code)
        return data

    def clear_cache(self, flag_key: Optional[str] = None):
        """Drop cached values for ``flag_key``, or everything."""
        if flag_key is None:
            self._cache.clear()
            return
        prefix = f"{flag_key}:"
        for key in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[key]

    def set_offline(self, offline: bool, bootstrap: Optional[Dict[str, Any]] = None):
        self.offline = offline
        if bootstrap is not None:
            self.bootstrap = bootstrap

    @staticmethod
    def _cache_key(flag_key: str, context: Dict[str, Any]) -> str:
        return f"{flag_key}:{json.dumps(context, sort_keys=True, default=str)}"

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise FlagClientError(
                message or f"Flag service returned {response.status_code}",
                response.status_code,
                {"code": payload.get("code")} if isinstance(payload, dict) else None
            )
        return payload.get("data") if isinstance(payload, dict) else None
