"""Direct session management over the orchestration webhook."""

import logging
import uuid

from webhook_hub.core.sessions import SessionError, SessionManager
from webhook_hub.models import (
    SESSION_TYPES,
    ClaudeSession,
    HandlerResponse,
    ProjectInfo,
    WebhookContext,
    WebhookPayload,
)
from webhook_hub.webhooks.base import WebhookEventHandler

logger = logging.getLogger(__name__)


def _failed(session: ClaudeSession) -> HandlerResponse:
    """Response for a session that was cancelled or failed to launch when queued."""
    return HandlerResponse(success=False, error=session.error, data={"session": session.to_dict()})


class SessionHandler(WebhookEventHandler):
    """Handles ``session`` and ``session.<op>`` requests."""

    event = "session*"
    priority = 90

    def __init__(self, manager: SessionManager):
        self.manager = manager
        self._ops = {
            "session": self._submit,
            "session.create": self._create,
            "session.get": self._get,
            "session.list": self._list,
            "session.start": self._start,
            "session.output": self._output,
            "session.stop": self._stop,
            "session.recover": self._recover,
        }

    def can_handle(self, payload: WebhookPayload, context: WebhookContext) -> bool:
        return payload.data is not None and payload.data.type in self._ops

    def handle(self, payload: WebhookPayload, context: WebhookContext) -> HandlerResponse:
        data = payload.data
        try:
            return self._ops[data.type](data)
        except SessionError as e:
            logger.warning("%s failed: %s", data.type, e)
            return HandlerResponse(success=False, error=str(e))

    def _lookup(self, session_id: str) -> ClaudeSession:
        session = self.manager.get_session(session_id)
        if session is None:
            raise SessionError(f"Session not found: {session_id}")
        return session

    # ── Operations ───────────────────────────────────────────────────────────

    def _submit(self, data) -> HandlerResponse:
        session = ClaudeSession(
            id=data.session_id or str(uuid.uuid4()),
            type="implementation",
            project=data.project,
            dependencies=list(data.dependencies),
        )
        self.manager.create_container(session)
        started = self.manager.queue_session(session)
        if session.status == "failed":
            return _failed(session)
        return HandlerResponse(
            success=True,
            message="Session started" if started else "Session queued",
            data={"session": session.to_dict(), "waitingFor": self.manager.unmet_dependencies(session)},
        )

    def _create(self, data) -> HandlerResponse:
        requested = data.session
        project = requested.get("project") or {}
        if not project.get("repository") or not project.get("requirements"):
            return HandlerResponse(
                success=False,
                error="Repository and requirements are required for session creation",
            )
        session_type = requested.get("type", "implementation")
        if session_type not in SESSION_TYPES:
            return HandlerResponse(success=False, error=f"Invalid session type: {session_type}")

        session = ClaudeSession(
            id=requested.get("id") or str(uuid.uuid4()),
            type=session_type,
            project=ProjectInfo.from_dict(project),
            dependencies=list(requested.get("dependencies") or data.dependencies),
        )
        self.manager.create_container(session)
        logger.info("Created session %s (%s)", session.id, session.type)

        if data.auto_start:
            started = self.manager.queue_session(session)
            if session.status == "failed":
                return _failed(session)
            return HandlerResponse(
                success=True,
                message="Session created and started" if started else "Session created and queued",
                data={"session": session.to_dict(), "waitingFor": self.manager.unmet_dependencies(session)},
            )
        return HandlerResponse(success=True, message="Session created", data={"session": session.to_dict()})

    def _get(self, data) -> HandlerResponse:
        session = self._lookup(data.session_id)
        return HandlerResponse(success=True, data={"session": session.to_dict()})

    def _list(self, data) -> HandlerResponse:
        if data.orchestration_id:
            sessions = self.manager.get_orchestration_sessions(data.orchestration_id)
        else:
            sessions = self.manager.get_all_sessions()
        return HandlerResponse(success=True, data={"sessions": [s.to_dict() for s in sessions]})

    def _start(self, data) -> HandlerResponse:
        session = self._lookup(data.session_id)
        if session.status != "pending":
            return HandlerResponse(success=False, error=f"Session is already {session.status}")

        unmet = self.manager.unmet_dependencies(session)
        started = self.manager.queue_session(session)
        if session.status == "failed":
            return _failed(session)
        if started:
            return HandlerResponse(success=True, message="Session started", data={"session": session.to_dict()})
        return HandlerResponse(
            success=True,
            message="Session queued, waiting for dependencies",
            data={"session": session.to_dict(), "waitingFor": unmet},
        )

    def _output(self, data) -> HandlerResponse:
        session = self._lookup(data.session_id)
        if session.output is None:
            return HandlerResponse(
                success=True,
                message="Session has no output yet",
                data={"status": session.status, "output": None},
            )
        return HandlerResponse(
            success=True,
            data={"status": session.status, "output": session.output.to_dict()},
        )

    def _stop(self, data) -> HandlerResponse:
        session = self.manager.stop_session(data.session_id)
        return HandlerResponse(success=True, message="Session stopped", data={"session": session.to_dict()})

    def _recover(self, data) -> HandlerResponse:
        recovered = self.manager.recover_session(data.session_id)
        if data.auto_start:
            self.manager.queue_session(recovered)
            if recovered.status == "failed":
                return _failed(recovered)
        return HandlerResponse(
            success=True,
            message=f"Session recovered as {recovered.id}",
            data={"session": recovered.to_dict(), "recoveredFrom": data.session_id},
        )
