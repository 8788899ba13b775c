"""Data models for the webhook hub."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SESSION_TYPES = ("analysis", "implementation", "testing", "review", "coordination")
SESSION_STATUSES = ("pending", "running", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")
PRIORITIES = ("high", "medium", "low")
STRATEGIES = ("sequential", "parallel", "wait_for_core")


# ── Webhook Models ───────────────────────────────────────────────────────────


@dataclass
class WebhookRequest:
    """Framework-agnostic view of an inbound HTTP request."""

    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    json: Any = None

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class WebhookPayload:
    id: str
    timestamp: str
    event: str
    source: str
    data: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookContext:
    provider: str
    authenticated: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class HandlerResponse:
    success: bool
    message: str | None = None
    error: str | None = None
    data: Any = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            d["message"] = self.message
        if self.error is not None:
            d["error"] = self.error
        if self.data is not None:
            d["data"] = self.data
        return d


# ── Session Models ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProjectInfo:
    repository: str
    requirements: str
    constraints: tuple[str, ...] = ()
    branch: str | None = None
    context: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectInfo":
        return cls(
            repository=data["repository"],
            requirements=data["requirements"],
            constraints=tuple(data.get("constraints") or ()),
            branch=data.get("branch"),
            context=data.get("context"),
        )

    def to_dict(self) -> dict:
        return {
            "repository": self.repository,
            "requirements": self.requirements,
            "constraints": list(self.constraints),
            "branch": self.branch,
            "context": self.context,
        }


@dataclass
class SessionArtifact:
    type: str
    path: str | None = None
    sha: str | None = None

    def to_dict(self) -> dict:
        d = {"type": self.type}
        if self.path is not None:
            d["path"] = self.path
        if self.sha is not None:
            d["sha"] = self.sha
        return d


@dataclass
class SessionOutput:
    logs: list[str] = field(default_factory=list)
    artifacts: list[SessionArtifact] = field(default_factory=list)
    summary: str = "Session completed"
    next_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "logs": list(self.logs),
            "artifacts": [a.to_dict() for a in self.artifacts],
            "summary": self.summary,
            "nextSteps": list(self.next_steps),
        }


@dataclass
class ClaudeSession:
    id: str
    type: str
    project: ProjectInfo
    status: str = "pending"
    dependencies: list[str] = field(default_factory=list)
    container_id: str | None = None
    claude_session_id: str | None = None
    output: SessionOutput | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "project": self.project.to_dict(),
            "dependencies": list(self.dependencies),
            "containerId": self.container_id,
            "claudeSessionId": self.claude_session_id,
            "output": self.output.to_dict() if self.output else None,
            "error": self.error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


# ── Decomposition Models ─────────────────────────────────────────────────────


@dataclass
class TaskComponent:
    name: str
    requirements: str
    priority: str = "medium"
    dependencies: list[str] = field(default_factory=list)
    context: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "requirements": self.requirements,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
        }


@dataclass
class TaskDecomposition:
    components: list[TaskComponent]
    strategy: str
    estimated_sessions: int

    def component(self, name: str) -> TaskComponent | None:
        return next((c for c in self.components if c.name == name), None)

    def to_dict(self) -> dict:
        return {
            "components": [c.to_dict() for c in self.components],
            "strategy": self.strategy,
            "estimatedSessions": self.estimated_sessions,
        }
