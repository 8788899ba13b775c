"""MCP server exposing decomposition and session management tools."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from mcp.server.fastmcp import Context, FastMCP

from webhook_hub.config import Config, get_config
from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.core.sessions import SessionError, SessionManager
from webhook_hub.handlers.orchestration import OrchestrationHandler
from webhook_hub.models import SESSION_TYPES, ClaudeSession, ProjectInfo, WebhookContext, WebhookPayload
from webhook_hub.providers.claude import parse_orchestration_request
from webhook_hub.webhooks.base import WebhookPayloadError

OUTPUT_LOG_LIMIT = 200


@dataclass
class AppContext:
    config: Config
    manager: SessionManager
    decomposer: TaskDecomposer


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the session manager on startup, stop running sessions on shutdown."""
    config = get_config()
    manager = SessionManager.from_config(config)
    try:
        yield AppContext(config=config, manager=manager, decomposer=TaskDecomposer())
    finally:
        for session in manager.get_all_sessions():
            if session.status == "running":
                manager.stop_session(session.id)


mcp = FastMCP("webhook-hub", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _project(repository: str, requirements: str, constraints: list[str] | None, branch: str | None) -> ProjectInfo:
    return ProjectInfo(
        repository=repository,
        requirements=requirements,
        constraints=tuple(constraints or ()),
        branch=branch,
    )


# ── Planning Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def decompose_project(ctx: Context, requirements: str, repository: str = "") -> dict:
    """Split requirements into components with priorities, dependencies and a strategy."""
    app = _ctx(ctx)
    project = _project(repository, requirements, None, None) if repository else requirements
    return app.decomposer.decompose(project).to_dict()


@mcp.tool()
def orchestrate(
    ctx: Context,
    repository: str,
    requirements: str,
    constraints: list[str] | None = None,
    phases: list[str] | None = None,
    branch: str | None = None,
) -> dict:
    """Decompose a project and schedule analysis, implementation, testing and review sessions."""
    app = _ctx(ctx)
    body = {
        "type": "orchestrate",
        "project": _project(repository, requirements, constraints, branch).to_dict(),
        "strategy": {"phases": phases} if phases else {},
    }
    try:
        request = parse_orchestration_request(body)
    except WebhookPayloadError as e:
        return {"error": str(e)}

    handler = OrchestrationHandler(app.manager, app.decomposer)
    payload = WebhookPayload(
        id=f"mcp-{uuid.uuid4().hex[:12]}",
        timestamp=datetime.now(timezone.utc).isoformat(),
        event="orchestrate",
        source="mcp",
        data=request,
    )
    result = handler.handle(payload, WebhookContext(provider="mcp", authenticated=True))
    if not result.success:
        return {"error": result.error, **(result.data or {})}
    return result.data


# ── Session Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def create_session(
    ctx: Context,
    repository: str,
    requirements: str,
    session_type: str = "implementation",
    dependencies: list[str] | None = None,
    session_id: str | None = None,
    branch: str | None = None,
) -> dict:
    """Create and provision a session without starting it."""
    if session_type not in SESSION_TYPES:
        return {"error": f"Invalid session type: {session_type}"}
    app = _ctx(ctx)
    session = ClaudeSession(
        id=session_id or str(uuid.uuid4()),
        type=session_type,
        project=_project(repository, requirements, None, branch),
        dependencies=list(dependencies or []),
    )
    try:
        app.manager.create_container(session)
    except SessionError as e:
        return {"error": str(e)}
    return session.to_dict()


@mcp.tool()
def start_session(ctx: Context, session_id: str) -> dict:
    """Start a session, or queue it until its dependencies complete."""
    app = _ctx(ctx)
    session = app.manager.get_session(session_id)
    if not session:
        return {"error": f"Session not found: {session_id}"}
    try:
        started = app.manager.queue_session(session)
    except SessionError as e:
        return {"error": str(e)}
    if session.status == "failed":
        return {"error": session.error, "session": session.to_dict()}
    return {
        "session": session.to_dict(),
        "started": started,
        "waitingFor": app.manager.unmet_dependencies(session),
    }


@mcp.tool()
def get_session(ctx: Context, session_id: str) -> dict:
    """Get a session's status, dependencies and result."""
    session = _ctx(ctx).manager.get_session(session_id)
    if not session:
        return {"error": f"Session not found: {session_id}"}
    return session.to_dict()


@mcp.tool()
def list_sessions(ctx: Context, orchestration_id: str | None = None, status: str | None = None) -> list[dict]:
    """List sessions, optionally limited to one orchestration or status."""
    manager = _ctx(ctx).manager
    if orchestration_id:
        sessions = manager.get_orchestration_sessions(orchestration_id)
    else:
        sessions = manager.get_all_sessions()
    return [s.to_dict() for s in sessions if status is None or s.status == status]


@mcp.tool()
def get_session_output(ctx: Context, session_id: str) -> dict:
    """Read the parsed output of a finished session."""
    session = _ctx(ctx).manager.get_session(session_id)
    if not session:
        return {"error": f"Session not found: {session_id}"}
    if session.output is None:
        return {"status": session.status, "output": None}
    output = session.output.to_dict()
    logs = output["logs"]
    if len(logs) > OUTPUT_LOG_LIMIT:
        output["logs"] = logs[-OUTPUT_LOG_LIMIT:]
        return {"status": session.status, "output": output, "truncated": True, "total_lines": len(logs)}
    return {"status": session.status, "output": output, "truncated": False}


@mcp.tool()
def stop_session(ctx: Context, session_id: str) -> dict:
    """Stop a running session or cancel a queued one."""
    try:
        session = _ctx(ctx).manager.stop_session(session_id)
    except SessionError as e:
        return {"error": str(e)}
    return session.to_dict()


@mcp.tool()
def recover_session(ctx: Context, session_id: str, start: bool = True) -> dict:
    """Re-run a finished session in a fresh container."""
    manager = _ctx(ctx).manager
    try:
        recovered = manager.recover_session(session_id)
        if start:
            manager.queue_session(recovered)
    except SessionError as e:
        return {"error": str(e)}
    return recovered.to_dict()
