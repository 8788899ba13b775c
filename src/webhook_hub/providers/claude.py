"""Orchestration webhook provider for the internal Claude client."""

import hmac
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.core.sessions import SessionManager
from webhook_hub.handlers.orchestration import OrchestrationHandler
from webhook_hub.handlers.sessions import SessionHandler
from webhook_hub.models import ProjectInfo, WebhookPayload, WebhookRequest
from webhook_hub.webhooks.base import WebhookPayloadError, WebhookProvider
from webhook_hub.webhooks.registry import WebhookRegistry

logger = logging.getLogger(__name__)

PROJECT_EVENTS = ("orchestrate", "coordinate", "session")
SESSION_ID_EVENTS = ("session.get", "session.start", "session.output", "session.stop", "session.recover")


@dataclass(frozen=True)
class OrchestrationRequest:
    """Validated body of an orchestration webhook."""

    type: str
    project: ProjectInfo | None = None
    strategy: dict = field(default_factory=dict)
    session_id: str | None = None
    parent_session_id: str | None = None
    orchestration_id: str | None = None
    dependencies: tuple[str, ...] = ()
    session: dict | None = None
    auto_start: bool = False


def _project(body: dict) -> ProjectInfo | None:
    project = body.get("project")
    if not isinstance(project, dict):
        return None
    if not project.get("repository") or not project.get("requirements"):
        return None
    return ProjectInfo.from_dict(project)


def parse_orchestration_request(body) -> OrchestrationRequest:
    """Validate the type-dependent required fields of an orchestration body."""
    if not isinstance(body, dict):
        raise WebhookPayloadError("Invalid payload: expected a JSON object")

    event_type = body.get("type")
    if not event_type or not isinstance(event_type, str):
        raise WebhookPayloadError("Invalid payload: missing required type field")

    project = _project(body)
    if event_type in PROJECT_EVENTS and project is None:
        raise WebhookPayloadError(
            "Invalid payload: missing required project fields (repository, requirements)"
        )
    if event_type == "session.create" and not isinstance(body.get("session"), dict):
        raise WebhookPayloadError("Invalid payload: missing required session fields")
    if event_type in SESSION_ID_EVENTS and not body.get("sessionId"):
        raise WebhookPayloadError("Invalid payload: missing required sessionId field")

    strategy = body.get("strategy") or {}
    if not isinstance(strategy, dict):
        raise WebhookPayloadError("Invalid payload: strategy must be an object")

    return OrchestrationRequest(
        type=event_type,
        project=project,
        strategy=strategy,
        session_id=body.get("sessionId"),
        parent_session_id=body.get("parentSessionId"),
        orchestration_id=body.get("orchestrationId"),
        dependencies=tuple(body.get("dependencies") or ()),
        session=body.get("session"),
        auto_start=bool(body.get("autoStart", False)),
    )


class ClaudeWebhookProvider(WebhookProvider):
    """Bearer-token authenticated provider for orchestration requests."""

    name = "claude"

    def verify_signature(self, request: WebhookRequest, secret: str) -> bool:
        auth = request.header("Authorization") or ""
        if not auth.startswith("Bearer "):
            return False
        token = auth[len("Bearer "):]
        return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))

    def parse_payload(self, request: WebhookRequest) -> WebhookPayload:
        body = request.json
        if body is None:
            try:
                body = json.loads(request.body or b"null")
            except json.JSONDecodeError as e:
                raise WebhookPayloadError(f"Invalid payload: {e}") from e

        data = parse_orchestration_request(body)
        return WebhookPayload(
            id=f"claude-{uuid.uuid4().hex[:12]}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=data.type,
            source="claude",
            data=data,
        )

    def get_event_description(self, payload: WebhookPayload) -> str:
        data: OrchestrationRequest = payload.data
        if data.type == "orchestrate":
            return f"Orchestrate Claude sessions for {data.project.repository}"
        if data.type == "coordinate":
            return f"Coordinate Claude sessions for {data.project.repository}"
        if data.type == "session" or data.type.startswith("session."):
            return f"Manage Claude session {data.session_id or 'new'} ({data.type})"
        return f"Unknown Claude event type: {data.type}"


def register_claude_provider(
    registry: WebhookRegistry,
    manager: SessionManager,
    decomposer: TaskDecomposer | None = None,
) -> ClaudeWebhookProvider:
    """Register the orchestration provider and its handlers on a registry."""
    provider = ClaudeWebhookProvider()
    registry.register_provider(provider)
    registry.register_handler("claude", OrchestrationHandler(manager, decomposer or TaskDecomposer()))
    registry.register_handler("claude", SessionHandler(manager))
    logger.info("Claude webhook provider initialized")
    return provider
