"""
Flag evaluation service for Switchboard.
"""

from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request

from shared.base_service import BaseService
from shared.config import SERVICE_VERSION, FlagServiceConfig, get_flag_service_config
from shared.errors import AuthenticationError, SwitchboardException, ValidationError
from shared.logging import set_evaluation_context

from .engine.models import Flag
from .evaluation import EvaluationService
from .recording.recorder import EvaluationRecorder
from .recording.sinks import (
    InMemoryRecordingSink, LoggingRecordingSink, RecordingSink, RedisStreamRecordingSink
)
from .schemas import (
    DefaultVariationRequest, EvaluationRequest, FlagDocument, FlagEvaluationResponse,
    ManagementEvaluationRequest, SuccessResponse, ToggleRequest
)
from .store.memory import InMemoryFlagStore

PROJECT_HEADER = "X-Project-Id"
SDK_VERSION_HEADER = "X-SDK-Version"
SDK_TYPE_HEADER = "X-SDK-Type"

ProjectResolver = Callable[[Request], str]


def project_from_header(request: Request) -> str:
    """Resolve the calling project from the ``X-Project-Id`` header.

    API key to project resolution happens in front of this service; the
    gateway forwards the resolved project id.
    """
    project_id = request.headers.get(PROJECT_HEADER)
    if not project_id:
        raise AuthenticationError(
            "Project could not be resolved for this request",
            {"header": PROJECT_HEADER}
        )
    return project_id


def build_sink(config: FlagServiceConfig) -> RecordingSink:
    """Create the recording sink selected by configuration."""
    if config.recording_sink == "memory":
        return InMemoryRecordingSink()
    if config.recording_sink == "redis":
        return RedisStreamRecordingSink(
            config.redis_url,
            stream=config.recording_stream,
            maxlen=config.recording_stream_maxlen
        )
    return LoggingRecordingSink()


def success(data: Any) -> Dict[str, Any]:
    return {"status": "success", "data": data}


class FlagsService(BaseService):
    """Flag evaluation service implementation."""

    def __init__(
        self,
        config: Optional[FlagServiceConfig] = None,
        *,
        store: Optional[InMemoryFlagStore] = None,
        sink: Optional[RecordingSink] = None,
        project_resolver: Optional[ProjectResolver] = None
    ):
        config = config or get_flag_service_config()
        self.store = store or InMemoryFlagStore()
        self.sink = sink or build_sink(config)
        self.project_resolver = project_resolver or project_from_header
        super().__init__(config)

        self.recorder = EvaluationRecorder(
            self.sink,
            max_queue_size=config.recording_queue_size,
            drain_timeout=config.recording_drain_timeout,
            metrics=self.metrics
        )
        self.evaluation = EvaluationService(self.store, self.recorder, metrics=self.metrics)

        self._setup_flag_routes()

    def _setup_flag_routes(self):
        """Set up SDK and management routes."""

        def resolve_project(request: Request) -> str:
            return self.project_resolver(request)

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Switchboard - Flag Evaluation Service",
                "version": SERVICE_VERSION,
                "capabilities": ["evaluation", "bulk_evaluation", "recording"]
            }

        @self.app.post(
            "/api/sdk/{environment}/evaluate",
            response_model=SuccessResponse[FlagEvaluationResponse]
        )
        async def sdk_evaluate_flag(
            environment: str,
            body: EvaluationRequest,
            request: Request,
            project_id: str = Depends(resolve_project)
        ):
            """Evaluate one flag for the calling SDK."""
            context = self._sdk_context(body.context, request)
            set_evaluation_context(project_id, environment, context.get("userId"))
            return success(self.evaluation.evaluate_flag(project_id, environment, body.flag_key, context))

        @self.app.get("/api/sdk/{environment}/flags")
        async def sdk_get_flags(
            environment: str,
            request: Request,
            project_id: str = Depends(resolve_project)
        ):
            """Evaluate every flag of the project; query parameters form the context."""
            context = self._sdk_context(dict(request.query_params), request)
            set_evaluation_context(project_id, environment, context.get("userId"))
            return success(self.evaluation.evaluate_all_flags(project_id, environment, context))

        @self.app.get("/api/projects/{project_id}/flags")
        async def list_flags(project_id: str):
            return success([flag.to_dict() for flag in self.store.list_flags(project_id)])

        @self.app.get("/api/projects/{project_id}/flags/{flag_key}")
        async def get_flag(project_id: str, flag_key: str):
            return success(self.store.get_flag(project_id, flag_key).to_dict())

        @self.app.put("/api/projects/{project_id}/flags/{flag_key}")
        async def put_flag(project_id: str, flag_key: str, body: FlagDocument):
            """Create or replace a flag snapshot."""
            if body.key is not None and body.key != flag_key:
                raise ValidationError(
                    "Flag key in body does not match the path",
                    {"path": flag_key, "body": body.key}
                )
            flag = Flag.from_dict(body.to_document(flag_key), project_id=project_id, strict=True)
            return success(self.store.put_flag(project_id, flag).to_dict())

        @self.app.delete("/api/projects/{project_id}/flags/{flag_key}")
        async def delete_flag(project_id: str, flag_key: str):
            self.store.delete_flag(project_id, flag_key)
            return success({"deleted": flag_key})

        @self.app.delete("/api/projects/{project_id}")
        async def delete_project(project_id: str):
            """Delete a project's flags."""
            count = self.store.delete_project(project_id)
            return success({"project": project_id, "deletedFlags": count})

        @self.app.post("/api/projects/{project_id}/flags/{flag_key}/evaluate")
        async def evaluate_flag(project_id: str, flag_key: str, body: ManagementEvaluationRequest):
            """Evaluate a flag from the management API."""
            set_evaluation_context(project_id, body.environment, body.context.get("userId"))
            return success(self.evaluation.evaluate_flag(project_id, body.environment, flag_key, body.context))

        @self.app.patch("/api/projects/{project_id}/flags/{flag_key}/environments/{environment}/toggle")
        async def toggle_environment(project_id: str, flag_key: str, environment: str, body: ToggleRequest):
            flag = self.store.toggle_environment(project_id, flag_key, environment, body.enabled)
            return success(flag.to_dict())

        @self.app.put("/api/projects/{project_id}/flags/{flag_key}/environments/{environment}/default-variation")
        async def set_default_variation(project_id: str, flag_key: str, environment: str,
                                        body: DefaultVariationRequest):
            flag = self.store.set_default_variation(project_id, flag_key, environment, body.key)
            return success(flag.to_dict())

        @self.app.delete(
            "/api/projects/{project_id}/flags/{flag_key}/environments/{environment}/variations/{variation_key}"
        )
        async def delete_variation(project_id: str, flag_key: str, environment: str, variation_key: str):
            flag = self.store.delete_variation(project_id, flag_key, environment, variation_key)
            return success(flag.to_dict())

        @self.app.get("/api/stats")
        async def get_stats():
            """Get flag service statistics."""
            return success({
                "store": self.store.get_stats(),
                "recorder": {"running": self.recorder.running},
            })

    @staticmethod
    def _sdk_context(context: Dict[str, Any], request: Request) -> Dict[str, Any]:
        context = dict(context)
        if request.client and request.client.host:
            context["clientIP"] = request.client.host
        sdk_version = request.headers.get(SDK_VERSION_HEADER)
        if sdk_version and "sdkVersion" not in context:
            context["sdkVersion"] = sdk_version
        sdk_type = request.headers.get(SDK_TYPE_HEADER)
        if sdk_type and "sdkType" not in context:
            context["sdkType"] = sdk_type
        return context

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check flag service dependencies."""
        dependencies = {"recorder": "ok" if self.recorder.running else "stopped"}
        health_check = getattr(self.sink, "health_check", None)
        if health_check is not None:
            try:
                dependencies["recording_sink"] = "ok" if await health_check() else "error"
            except Exception:
                dependencies["recording_sink"] = "error"
        return dependencies

    async def start(self):
        """Start flag service components."""
        sink_start = getattr(self.sink, "start", None)
        if sink_start is not None:
            try:
                await sink_start()
            except SwitchboardException as e:
                # evaluations are still served without a recording sink
                self.logger.error("Recording sink unavailable", error=e.message)

        if self.config.seed_file:
            self.store.load_file(self.config.seed_file)

        await self.recorder.start()
        self.logger.info("Flag service started", **self.store.get_stats())

    async def stop(self):
        """Stop flag service components."""
        await self.recorder.stop()
        sink_stop = getattr(self.sink, "stop", None)
        if sink_stop is not None:
            await sink_stop()
        self.logger.info("Flag service stopped")


def create_app(config: Optional[FlagServiceConfig] = None, **kwargs):
    """Create flag service application."""
    service = FlagsService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    FlagsService().run()
