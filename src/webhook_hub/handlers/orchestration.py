"""Bridge from orchestration webhooks into the session scheduler."""

import logging
import re
import uuid

from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.core.sessions import SessionManager
from webhook_hub.models import (
    ClaudeSession,
    HandlerResponse,
    ProjectInfo,
    TaskDecomposition,
    WebhookContext,
    WebhookPayload,
)
from webhook_hub.webhooks.base import WebhookEventHandler

logger = logging.getLogger(__name__)

DEFAULT_PHASES = ("analysis", "implementation", "testing", "review")


def build_orchestration_sessions(
    orchestration_id: str,
    project: ProjectInfo,
    decomposition: TaskDecomposition,
    phases=DEFAULT_PHASES,
) -> list[ClaudeSession]:
    """Session graph for one orchestration, in dependency order."""
    sessions: list[ClaudeSession] = []
    analysis_ids: list[str] = []
    impl_ids: list[str] = []

    if "analysis" in phases:
        analysis = ClaudeSession(
            id=f"{orchestration_id}-analysis",
            type="analysis",
            project=project,
        )
        sessions.append(analysis)
        analysis_ids.append(analysis.id)

    if "implementation" in phases:
        # Component dependencies can point forward in component order
        impl_by_component = {
            c.name: f"{orchestration_id}-impl-{i}" for i, c in enumerate(decomposition.components)
        }
        for component in decomposition.components:
            session_id = impl_by_component[component.name]
            deps = analysis_ids + [
                impl_by_component[d] for d in component.dependencies if d in impl_by_component
            ]
            sessions.append(ClaudeSession(
                id=session_id,
                type="implementation",
                project=ProjectInfo(
                    repository=project.repository,
                    requirements=component.requirements,
                    constraints=project.constraints,
                    branch=project.branch,
                    context=component.context,
                ),
                dependencies=deps,
            ))
            impl_ids.append(session_id)

    testing_ids: list[str] = []
    if "testing" in phases:
        testing = ClaudeSession(
            id=f"{orchestration_id}-testing",
            type="testing",
            project=project,
            dependencies=list(impl_ids or analysis_ids),
        )
        sessions.append(testing)
        testing_ids.append(testing.id)

    if "review" in phases:
        sessions.append(ClaudeSession(
            id=f"{orchestration_id}-review",
            type="review",
            project=project,
            dependencies=(impl_ids + testing_ids) or list(analysis_ids),
        ))

    return sessions


class OrchestrationHandler(WebhookEventHandler):
    """Decomposes a project and schedules its sessions.

    ``orchestrate`` builds the full analysis/implementation/testing/review
    graph; ``coordinate`` schedules a single coordination session behind
    the sessions named in ``dependencies``.
    """

    event = re.compile(r"^(orchestrate|coordinate)$")
    priority = 100

    def __init__(self, manager: SessionManager, decomposer: TaskDecomposer | None = None):
        self.manager = manager
        self.decomposer = decomposer or TaskDecomposer()

    def can_handle(self, payload: WebhookPayload, context: WebhookContext) -> bool:
        data = payload.data
        return data is not None and data.type in ("orchestrate", "coordinate") and data.project is not None

    def handle(self, payload: WebhookPayload, context: WebhookContext) -> HandlerResponse:
        data = payload.data
        if data.type == "coordinate":
            return self._coordinate(data)
        return self._orchestrate(data)

    def _orchestrate(self, data) -> HandlerResponse:
        orchestration_id = data.orchestration_id or str(uuid.uuid4())
        strategy = data.strategy or {}
        phases = tuple(strategy.get("phases") or DEFAULT_PHASES)
        logger.info("Starting orchestration %s for %s", orchestration_id, data.project.repository)

        decomposition = self.decomposer.decompose(data.project)
        sessions = build_orchestration_sessions(orchestration_id, data.project, decomposition, phases)
        if not sessions:
            return HandlerResponse(success=False, error="No sessions to run for the requested phases")

        created: list[ClaudeSession] = []
        try:
            for session in sessions:
                self.manager.create_container(session)
                created.append(session)
        except Exception as e:
            logger.exception("Provisioning failed for orchestration %s", orchestration_id)
            for session in created:
                self.manager.fail_pending(session.id, f"Orchestration provisioning failed: {e}")
            return HandlerResponse(
                success=False,
                error=f"Failed to create container for {session.id}: {e}",
                data={"orchestrationId": orchestration_id, "sessions": [s.to_dict() for s in created]},
            )

        started = [s.id for s in sessions if self.manager.queue_session(s)]
        failed = [s for s in sessions if s.status == "failed"]
        logger.info(
            "Orchestration %s: %d sessions created, %d started, %d failed",
            orchestration_id, len(sessions), len(started), len(failed),
        )

        return HandlerResponse(
            success=not failed,
            message="Orchestration initiated successfully" if not failed else None,
            error=f"Session {failed[0].id} failed: {failed[0].error}" if failed else None,
            data={
                "orchestrationId": orchestration_id,
                "status": "failed" if failed else "initiated",
                "sessions": [s.to_dict() for s in sessions],
                "decomposition": decomposition.to_dict(),
                "dependencyMode": strategy.get("dependencyMode", "wait_for_core"),
                "summary": (
                    f"Created {len(sessions)} sessions for {len(decomposition.components)} "
                    f"components; {len(started)} started immediately"
                ),
            },
        )

    def _coordinate(self, data) -> HandlerResponse:
        session = ClaudeSession(
            id=data.session_id or f"{data.orchestration_id or uuid.uuid4()}-coordination",
            type="coordination",
            project=data.project,
            dependencies=list(data.dependencies),
        )
        self.manager.create_container(session)
        started = self.manager.queue_session(session)
        if session.status == "failed":
            return HandlerResponse(success=False, error=session.error, data={"session": session.to_dict()})
        return HandlerResponse(
            success=True,
            message="Coordination session started" if started else "Coordination session queued",
            data={"session": session.to_dict(), "waitingFor": self.manager.unmet_dependencies(session)},
        )
