"""Dependency-gated scheduling of Claude sessions onto executor containers."""

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime

from webhook_hub.config import Config
from webhook_hub.core.executor import DockerExecutor, Executor
from webhook_hub.models import ClaudeSession, SessionArtifact, SessionOutput

logger = logging.getLogger(__name__)

OutputParser = Callable[[list[str]], SessionOutput]
SessionNotifier = Callable[[ClaudeSession], None]


class SessionError(RuntimeError):
    """Raised when a session operation violates the session lifecycle."""


# ── Commands & Output ────────────────────────────────────────────────────────


def build_session_command(session: ClaudeSession) -> str:
    """Natural-language instruction for the agent, chosen by session type."""
    project = session.project
    repository, requirements = project.repository, project.requirements

    if session.type == "analysis":
        return (
            f"Analyze the project {repository} and create a detailed "
            f"implementation plan for: {requirements}"
        )
    if session.type == "implementation":
        command = f"Implement the following in {repository}: {requirements}."
        if project.context:
            command += f" {project.context}"
        if project.constraints:
            command += " Constraints: " + "; ".join(project.constraints)
        return command
    if session.type == "testing":
        return f"Write comprehensive tests for the implementation in {repository}"
    if session.type == "review":
        return f"Review the code changes in {repository} and provide feedback"
    if session.type == "coordination":
        return f"Coordinate the implementation of {requirements} in {repository}"
    return requirements


MARKERS = ("Created file:", "Committed:", "Summary:", "Next step:")


def parse_session_output(logs: list[str]) -> SessionOutput:
    """Scrape artifacts, summary and next steps out of raw log lines.

    Never fails: lines without a marker are kept only in ``logs``.
    """
    artifacts: list[SessionArtifact] = []
    summary: list[str] = []
    next_steps: list[str] = []

    for line in logs:
        if "Created file:" in line:
            artifacts.append(SessionArtifact(type="file", path=line.split("Created file:", 1)[1].strip()))
        elif "Committed:" in line:
            artifacts.append(SessionArtifact(type="commit", sha=line.split("Committed:", 1)[1].strip()))
        elif "Summary:" in line:
            summary.append(line.split("Summary:", 1)[1].strip())
        elif "Next step:" in line:
            next_steps.append(line.split("Next step:", 1)[1].strip())

    return SessionOutput(
        logs=list(logs),
        artifacts=artifacts,
        summary="\n".join(summary) if summary else "Session completed",
        next_steps=next_steps,
    )


def _init_session_id(line: str) -> str | None:
    """Agent session id from a stream-json init line, if the line is one."""
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(data, dict) and data.get("type") == "system" and data.get("subtype") == "init":
        return data.get("session_id")
    return None


# ── Session Manager ──────────────────────────────────────────────────────────


class SessionManager:
    """Owns the session table and the dependent queues.

    Every read-modify-write of session state happens under one lock. A
    pending session is claimed (moved to running) under that lock before
    its container is launched, so concurrent completions of two
    dependencies can never start the same dependent twice.

    When a session fails, every session waiting on it (transitively) is
    failed as well instead of staying queued.
    """

    def __init__(
        self,
        executor: Executor,
        session_timeout: float | None = None,
        credentials: dict[str, str] | None = None,
        output_parser: OutputParser = parse_session_output,
        notifier: SessionNotifier | None = None,
    ):
        self.executor = executor
        self.session_timeout = session_timeout or None
        self.credentials = credentials or {}
        self.output_parser = output_parser
        self.notifier = notifier
        self._sessions: dict[str, ClaudeSession] = {}
        self._waiting: dict[str, list[str]] = {}
        self._env: dict[str, dict[str, str]] = {}
        self._logs: dict[str, list[str]] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._stdout_seen: set[str] = set()
        self._reserved: set[str] = set()
        # Volumes outlive their containers, so names are never reused
        self._container_names: set[str] = set()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: Config, executor: Executor | None = None) -> "SessionManager":
        """Manager wired to docker, configured credentials and optional Slack notices."""
        notifier = None
        if config.slack_bot_token and config.slack_channel:
            from webhook_hub.integrations.slack import SlackSessionNotifier
            notifier = SlackSessionNotifier(config.slack_bot_token, config.slack_channel)
        return cls(
            executor or DockerExecutor(config),
            session_timeout=config.session_timeout,
            credentials=config.credentials(),
            notifier=notifier,
        )

    # ── Provisioning ─────────────────────────────────────────────────────────

    def create_container(self, session: ClaudeSession) -> str:
        """Provision a dedicated container for a session and record it.

        Executor failures propagate to the caller.
        """
        with self._lock:
            name = self._reserve(session)
        return self._provision(session, name)

    def _reserve(self, session: ClaudeSession) -> str:
        """Claim a session id and container name ahead of provisioning. Lock held."""
        existing = self._sessions.get(session.id)
        if (existing is not None and existing is not session) or session.id in self._reserved:
            raise SessionError(f"Session already exists: {session.id}")
        if session.container_id:
            raise SessionError(f"Session {session.id} already has container {session.container_id}")
        self._reserved.add(session.id)
        return self._container_name(session)

    def _provision(self, session: ClaudeSession, name: str) -> str:
        logger.info("Creating container %s for session %s", name, session.id)
        try:
            container_id = self.executor.create(name)
        except Exception:
            with self._lock:
                self._reserved.discard(session.id)
                self._container_names.discard(name)
            raise

        env = {
            "SESSION_ID": session.id,
            "SESSION_TYPE": session.type,
            "REPO_FULL_NAME": session.project.repository,
            "BRANCH_NAME": session.project.branch or "",
            "ISSUE_NUMBER": "",
            "IS_PULL_REQUEST": "false",
        }
        env.update({k: v for k, v in self.credentials.items() if v})

        with self._lock:
            session.container_id = container_id
            self._sessions[session.id] = session
            self._reserved.discard(session.id)
            self._env[session.id] = env
        return container_id

    def _container_name(self, session: ClaudeSession) -> str:
        """Display name from type and id prefix, suffixed when a prefix repeats. Lock held."""
        base = f"claude-{session.type}-{session.id[:8]}"
        name, n = base, 1
        while name in self._container_names:
            n += 1
            name = f"{base}-{n}"
        self._container_names.add(name)
        return name

    # ── Starting ─────────────────────────────────────────────────────────────

    def start_session(self, session: ClaudeSession) -> None:
        """Mark a provisioned session running and launch its container."""
        with self._lock:
            self._claim(session)
        self._launch(session)

    def _claim(self, session: ClaudeSession) -> None:
        if not session.container_id:
            raise SessionError("Session has no container ID")
        if session.status != "pending":
            raise SessionError(f"Session {session.id} cannot be started in status: {session.status}")
        session.status = "running"
        session.started_at = datetime.now()
        self._sessions[session.id] = session
        self._logs[session.id] = []

    def _launch(self, session: ClaudeSession) -> None:
        command = build_session_command(session)
        env = {
            **self._env.get(session.id, {}),
            "COMMAND": command,
            "OPERATION_TYPE": "session",
            "OUTPUT_FORMAT": "stream-json",
        }
        logger.info("Starting session %s (%s)", session.id, session.type)

        if self.session_timeout:
            timer = threading.Timer(self.session_timeout, self._on_timeout, args=(session.id,))
            timer.daemon = True
            with self._lock:
                self._timers[session.id] = timer
            timer.start()

        try:
            self.executor.start(
                session.container_id,
                env,
                on_output=lambda stream, line: self._on_output(session.id, stream, line),
                on_exit=lambda code: self._finish(session.id, code),
            )
        except Exception as e:
            logger.exception("Failed to start session %s", session.id)
            self._finish(session.id, None, error=str(e) or "Failed to start session")
            raise

    def queue_session(self, session: ClaudeSession) -> bool:
        """Start a session now if its dependencies are complete, else queue it.

        Returns True when the session was started immediately. A session
        that could not start (a failed dependency or a launch error) is left
        ``failed`` with its dependents cascaded, and False is returned.
        """
        with self._lock:
            self._sessions.setdefault(session.id, session)
            failed = [d for d in session.dependencies if self._status(d) == "failed"]
            cancelled: list[ClaudeSession] = []
            if failed:
                cancelled = self._fail_cascade(session.id, f"Dependency {failed[0]} failed")
            else:
                unmet = self._unmet_dependencies(session)
                if not unmet:
                    self._claim(session)
                else:
                    for dep_id in unmet:
                        waiters = self._waiting.setdefault(dep_id, [])
                        if session.id not in waiters:
                            waiters.append(session.id)
                    logger.info("Session %s queued, waiting for %s", session.id, unmet)
                    return False

        if failed:
            for s in cancelled:
                self._notify(s)
            return False
        try:
            self._launch(session)
        except Exception:
            # _launch already recorded the failure
            return False
        return True

    def unmet_dependencies(self, session: ClaudeSession) -> list[str]:
        with self._lock:
            return self._unmet_dependencies(session)

    def _unmet_dependencies(self, session: ClaudeSession) -> list[str]:
        return [d for d in session.dependencies if self._status(d) != "completed"]

    def _status(self, session_id: str) -> str | None:
        dep = self._sessions.get(session_id)
        return dep.status if dep else None

    # ── Completion ───────────────────────────────────────────────────────────

    def _on_output(self, session_id: str, stream: str, line: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            logs = self._logs.get(session_id)
            if session is None or session.status != "running" or logs is None:
                # late output from a stopped or timed out container
                return
            if stream == "stderr":
                logs.append(f"ERROR: {line}")
                logger.warning("Session %s stderr: %s", session_id, line)
                return
            logs.append(line)
            first = session_id not in self._stdout_seen
            self._stdout_seen.add(session_id)
            if first and session.claude_session_id is None:
                session.claude_session_id = _init_session_id(line)
                if session.claude_session_id:
                    logger.info(
                        "Captured agent session id %s for %s",
                        session.claude_session_id, session_id,
                    )
        logger.debug("Session %s output: %s", session_id, line)

    def _finish(self, session_id: str, exit_code: int | None, error: str | None = None) -> None:
        """Move a running session to its terminal state, at most once."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status != "running":
                return
            if exit_code == 0 and error is None:
                session.status = "completed"
            else:
                session.status = "failed"
                session.error = error or f"Process exited with code {exit_code}"
            session.completed_at = datetime.now()
            session.output = self.output_parser(self._logs.pop(session_id, []))
            timer = self._timers.pop(session_id, None)
            self._env.pop(session_id, None)
            self._stdout_seen.discard(session_id)

        if timer is not None:
            timer.cancel()
        logger.info("Session %s %s", session_id, session.status)
        self._notify(session)
        self.notify_waiting_sessions(session_id)

    def _on_timeout(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status != "running":
                return
        logger.error("Session %s exceeded timeout of %ss", session_id, self.session_timeout)
        self._finish(session_id, None, error=f"Session timed out after {self.session_timeout}s")
        try:
            self.executor.stop(session.container_id)
        except Exception:
            logger.exception("Failed to stop timed out container %s", session.container_id)

    def notify_waiting_sessions(self, completed_session_id: str) -> None:
        """Re-evaluate every session waiting on a finished dependency."""
        to_launch: list[ClaudeSession] = []
        failed: list[ClaudeSession] = []

        with self._lock:
            waiting_ids = self._waiting.pop(completed_session_id, [])
            dependency = self._sessions.get(completed_session_id)
            if dependency is not None and dependency.status == "failed":
                for waiting_id in waiting_ids:
                    failed += self._fail_cascade(waiting_id, f"Dependency {completed_session_id} failed")
            else:
                for waiting_id in waiting_ids:
                    waiting = self._sessions.get(waiting_id)
                    if waiting is None or waiting.status != "pending":
                        continue
                    if self._unmet_dependencies(waiting):
                        continue
                    try:
                        self._claim(waiting)
                    except SessionError as e:
                        logger.error("Cannot start waiting session %s: %s", waiting_id, e)
                        continue
                    to_launch.append(waiting)

        for session in failed:
            self._notify(session)
        for session in to_launch:
            logger.info("Starting waiting session %s", session.id)
            try:
                self._launch(session)
            except Exception:
                logger.exception("Failed to start waiting session %s", session.id)

    def _fail_cascade(self, session_id: str, reason: str) -> list[ClaudeSession]:
        """Fail a pending session and everything transitively waiting on it. Lock held."""
        failed = []
        stack = [(session_id, reason)]
        while stack:
            sid, why = stack.pop()
            session = self._sessions.get(sid)
            if session is None or session.status != "pending":
                continue
            session.status = "failed"
            session.error = why
            session.completed_at = datetime.now()
            self._env.pop(sid, None)
            failed.append(session)
            logger.warning("Session %s failed: %s", sid, why)
            for waiter in self._waiting.pop(sid, []):
                stack.append((waiter, f"Dependency {sid} failed"))
        return failed

    def _notify(self, session: ClaudeSession) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(session)
        except Exception:
            logger.exception("Session notifier failed for %s", session.id)

    # ── Stop & Recovery ──────────────────────────────────────────────────────

    def stop_session(self, session_id: str) -> ClaudeSession:
        """Stop a running session, or cancel a queued one. Both end as failed."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionError(f"Session not found: {session_id}")
            status = session.status
            cancelled = self._fail_cascade(session_id, "Session cancelled") if status == "pending" else []

        if status == "running":
            self._finish(session_id, None, error="Session stopped")
            self.executor.stop(session.container_id)
        elif status == "pending":
            for s in cancelled:
                self._notify(s)
        else:
            raise SessionError(f"Session {session_id} already {status}")
        return session

    def fail_pending(self, session_id: str, reason: str) -> list[ClaudeSession]:
        """Fail a session that never started, along with anything queued behind it."""
        with self._lock:
            failed = self._fail_cascade(session_id, reason)
        for s in failed:
            self._notify(s)
        return failed

    def recover_session(self, session_id: str) -> ClaudeSession:
        """Create and provision a fresh session copying a finished one."""
        with self._lock:
            original = self._sessions.get(session_id)
            if original is None:
                raise SessionError(f"Session not found: {session_id}")
            if not original.is_terminal:
                raise SessionError(f"Session {session_id} is still {original.status}")
            n = 1
            while f"{session_id}-recovery-{n}" in self._sessions.keys() | self._reserved:
                n += 1
            recovered = ClaudeSession(
                id=f"{session_id}-recovery-{n}",
                type=original.type,
                project=original.project,
                dependencies=list(original.dependencies),
            )
            name = self._reserve(recovered)
        self._provision(recovered, name)
        logger.info("Recovered session %s as %s", session_id, recovered.id)
        return recovered

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> ClaudeSession | None:
        return self._sessions.get(session_id)

    def get_orchestration_sessions(self, orchestration_id: str) -> list[ClaudeSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.id.startswith(orchestration_id)]

    def get_all_sessions(self) -> list[ClaudeSession]:
        with self._lock:
            return list(self._sessions.values())

    def waiting_on(self, session_id: str) -> list[str]:
        """Ids of sessions queued behind a dependency."""
        with self._lock:
            return list(self._waiting.get(session_id, []))
