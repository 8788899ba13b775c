"""Tests for the built-in webhook event handlers."""

from unittest.mock import MagicMock

import pytest

from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.core.executor import ExecResult, ExecutorError
from webhook_hub.core.sessions import SessionManager
from webhook_hub.handlers.issues import IssueOpenedHandler
from webhook_hub.handlers.orchestration import OrchestrationHandler, build_orchestration_sessions
from webhook_hub.handlers.sessions import SessionHandler
from webhook_hub.integrations.github import GitHubError
from webhook_hub.models import ProjectInfo, WebhookContext, WebhookPayload
from webhook_hub.providers.claude import parse_orchestration_request

PROJECT = {"repository": "acme/repo", "requirements": "Create a REST API backed by a database"}


def _claude_payload(body):
    request = parse_orchestration_request(body)
    return WebhookPayload(id="claude-1", timestamp="now", event=request.type, source="claude", data=request)


def _context(provider="claude"):
    return WebhookContext(provider=provider, authenticated=True)


@pytest.fixture
def manager(executor):
    return SessionManager(executor)


# ── Issue auto-tagging ───────────────────────────────────────────────────────


ISSUE_DATA = {
    "action": "opened",
    "issue": {"number": 7, "title": "API returns error on login", "body": "Urgent, production is down"},
    "repository": {"full_name": "acme/repo"},
}


def _issue_payload(data=ISSUE_DATA):
    return WebhookPayload(id="d1", timestamp="now", event="issues.opened", source="github", data=data)


class TestIssueOpenedHandler:
    def test_runs_tagging_container(self, executor):
        handler = IssueOpenedHandler(executor, credentials={"GITHUB_TOKEN": "ghp_x"}, timeout=30)
        result = handler.handle(_issue_payload(), _context("github"))

        assert result.success
        assert result.data == {"repo": "acme/repo", "issue": 7, "fallbackLabels": []}
        name, env, timeout = executor.runs[0]
        assert name.startswith("claude-tagging-acme-repo-7-")
        assert timeout == 30
        assert env["OPERATION_TYPE"] == "auto-tagging"
        assert env["ISSUE_NUMBER"] == "7"
        assert env["IS_PULL_REQUEST"] == "false"
        assert env["GITHUB_TOKEN"] == "ghp_x"
        assert "gh issue edit 7" in env["COMMAND"]

    def test_fallback_labels_on_failed_run(self, executor):
        executor.run_result = ExecResult(1, "", "boom")
        github = MagicMock()
        handler = IssueOpenedHandler(executor, github)
        result = handler.handle(_issue_payload(), _context("github"))

        assert result.success
        labels = result.data["fallbackLabels"]
        assert labels == ["type:bug", "priority:critical", "component:api"]
        github.add_labels.assert_called_once_with("acme", "repo", 7, labels)

    def test_fallback_when_output_mentions_error(self, executor):
        executor.run_result = ExecResult(0, "gh: label Failed to apply", "")
        github = MagicMock()
        IssueOpenedHandler(executor, github).handle(_issue_payload(), _context("github"))
        github.add_labels.assert_called_once()

    def test_fallback_when_executor_raises(self, executor):
        executor.run = MagicMock(side_effect=ExecutorError("docker missing"))
        github = MagicMock()
        result = IssueOpenedHandler(executor, github).handle(_issue_payload(), _context("github"))
        assert result.success
        github.add_labels.assert_called_once()

    def test_fallback_api_failure(self, executor):
        executor.run_result = ExecResult(1, "", "")
        github = MagicMock()
        github.add_labels.side_effect = GitHubError("403")
        result = IssueOpenedHandler(executor, github).handle(_issue_payload(), _context("github"))
        assert not result.success
        assert "403" in result.error

    def test_can_handle_requires_issue_and_repo(self, executor):
        handler = IssueOpenedHandler(executor)
        assert handler.can_handle(_issue_payload(), _context("github"))
        assert not handler.can_handle(_issue_payload({"action": "opened"}), _context("github"))


# ── Orchestration ────────────────────────────────────────────────────────────


class TestSessionGraph:
    def test_full_graph(self):
        project = ProjectInfo(**PROJECT)
        decomposition = TaskDecomposer().decompose(project)
        sessions = build_orchestration_sessions("o1", project, decomposition)
        by_id = {s.id: s for s in sessions}

        assert [c.name for c in decomposition.components] == ["api", "backend"]
        assert list(by_id) == ["o1-analysis", "o1-impl-0", "o1-impl-1", "o1-testing", "o1-review"]
        # api depends on backend, which comes later in component order
        assert by_id["o1-impl-0"].dependencies == ["o1-analysis", "o1-impl-1"]
        assert by_id["o1-impl-1"].dependencies == ["o1-analysis"]
        assert by_id["o1-testing"].dependencies == ["o1-impl-0", "o1-impl-1"]
        assert by_id["o1-review"].dependencies == ["o1-impl-0", "o1-impl-1", "o1-testing"]

    def test_impl_depends_on_earlier_component(self):
        project = ProjectInfo(repository="acme/repo", requirements="Add a React UI and deploy it")
        decomposition = TaskDecomposer().decompose(project)
        sessions = build_orchestration_sessions("o1", project, decomposition)
        deploy = next(s for s in sessions if s.id == "o1-impl-1")
        assert deploy.dependencies == ["o1-analysis", "o1-impl-0"]
        assert deploy.project.requirements == "Add a React UI and deploy it"

    def test_phases_subset(self):
        project = ProjectInfo(**PROJECT)
        decomposition = TaskDecomposer().decompose(project)
        sessions = build_orchestration_sessions("o1", project, decomposition, ("implementation",))
        assert [s.id for s in sessions] == ["o1-impl-0", "o1-impl-1"]
        assert sessions[0].dependencies == ["o1-impl-1"]
        assert sessions[1].dependencies == []


class TestOrchestrationHandler:
    def test_orchestrate(self, manager, executor):
        handler = OrchestrationHandler(manager)
        payload = _claude_payload({"type": "orchestrate", "project": PROJECT, "orchestrationId": "o1"})
        assert handler.can_handle(payload, _context())

        result = handler.handle(payload, _context())
        assert result.success
        data = result.data
        assert data["orchestrationId"] == "o1"
        assert data["status"] == "initiated"
        assert len(data["sessions"]) == 5
        assert data["decomposition"]["estimatedSessions"] == 5
        assert "Created 5 sessions for 2 components" in data["summary"]

        # only the analysis session has no dependencies
        analysis = manager.get_session("o1-analysis")
        assert analysis.status == "running"
        assert executor.started == [analysis.container_id]
        assert all(manager.get_session(s["id"]).container_id for s in data["sessions"])

    def test_sessions_run_in_dependency_order(self, manager, executor):
        handler = OrchestrationHandler(manager)
        handler.handle(_claude_payload({"type": "orchestrate", "project": PROJECT, "orchestrationId": "o1"}),
                       _context())

        executor.finish(manager.get_session("o1-analysis").container_id, 0)
        assert manager.get_session("o1-impl-1").status == "running"
        assert manager.get_session("o1-impl-0").status == "pending"

        executor.finish(manager.get_session("o1-impl-1").container_id, 0)
        assert manager.get_session("o1-impl-0").status == "running"
        assert manager.get_session("o1-testing").status == "pending"

        executor.finish(manager.get_session("o1-impl-0").container_id, 0)
        assert manager.get_session("o1-testing").status == "running"

    def test_generates_orchestration_id(self, manager):
        result = OrchestrationHandler(manager).handle(
            _claude_payload({"type": "orchestrate", "project": PROJECT}), _context(),
        )
        orchestration_id = result.data["orchestrationId"]
        assert len(orchestration_id) == 36
        assert len(manager.get_orchestration_sessions(orchestration_id)) == 5

    def test_provisioning_failure_fails_created_sessions(self, manager, executor):
        create = executor.create
        names = []

        def create_until_full(name):
            names.append(name)
            if len(names) == 3:
                raise ExecutorError("no space left on device")
            return create(name)

        executor.create = create_until_full
        result = OrchestrationHandler(manager).handle(
            _claude_payload({"type": "orchestrate", "project": PROJECT, "orchestrationId": "o1"}), _context(),
        )

        assert not result.success
        assert "o1-impl-1" in result.error
        assert {s.id: s.status for s in manager.get_all_sessions()} == {
            "o1-analysis": "failed", "o1-impl-0": "failed",
        }
        assert executor.started == []

    def test_launch_failure_cascades_to_every_session(self, manager, executor):
        executor.fail_start = True
        result = OrchestrationHandler(manager).handle(
            _claude_payload({"type": "orchestrate", "project": PROJECT, "orchestrationId": "o1"}), _context(),
        )

        assert not result.success
        assert result.data["status"] == "failed"
        assert "o1-analysis" in result.error
        statuses = {s.id: s.status for s in manager.get_orchestration_sessions("o1")}
        assert statuses == dict.fromkeys(
            ["o1-analysis", "o1-impl-0", "o1-impl-1", "o1-testing", "o1-review"], "failed",
        )
        assert manager.get_session("o1-analysis").error == "docker run failed"
        assert manager.get_session("o1-impl-1").error == "Dependency o1-analysis failed"
        assert manager.waiting_on("o1-analysis") == []

    def test_coordinate_behind_failed_dependency(self, manager, executor):
        first = build_orchestration_sessions(
            "o1", ProjectInfo(**PROJECT), TaskDecomposer().decompose("Fix a typo"), ("analysis",),
        )[0]
        manager.create_container(first)
        manager.start_session(first)
        executor.finish(first.container_id, 1)

        payload = _claude_payload({
            "type": "coordinate", "project": PROJECT, "orchestrationId": "o1",
            "dependencies": ["o1-analysis"],
        })
        result = OrchestrationHandler(manager).handle(payload, _context())
        assert not result.success
        assert result.error == "Dependency o1-analysis failed"
        assert result.data["session"]["status"] == "failed"

    def test_coordinate(self, manager, executor):
        manager.create_container(build_orchestration_sessions(
            "o1", ProjectInfo(**PROJECT), TaskDecomposer().decompose("Fix a typo"), ("analysis",),
        )[0])
        payload = _claude_payload({
            "type": "coordinate", "project": PROJECT, "orchestrationId": "o1",
            "dependencies": ["o1-analysis"],
        })
        result = OrchestrationHandler(manager).handle(payload, _context())
        assert result.success
        assert result.message == "Coordination session queued"
        assert result.data["session"]["id"] == "o1-coordination"
        assert result.data["session"]["type"] == "coordination"
        assert result.data["waitingFor"] == ["o1-analysis"]


# ── Session management ───────────────────────────────────────────────────────


class TestSessionHandler:
    @pytest.fixture
    def handler(self, manager):
        return SessionHandler(manager)

    def _call(self, handler, body):
        payload = _claude_payload(body)
        assert handler.can_handle(payload, _context())
        return handler.handle(payload, _context())

    def test_create_without_start(self, handler, manager):
        result = self._call(handler, {"type": "session.create", "session": {
            "id": "s1", "type": "analysis", "project": PROJECT,
        }})
        assert result.success
        assert result.message == "Session created"
        assert manager.get_session("s1").status == "pending"
        assert manager.get_session("s1").container_id

    def test_create_and_start(self, handler, manager):
        result = self._call(handler, {"type": "session.create", "autoStart": True, "session": {
            "id": "s1", "project": PROJECT,
        }})
        assert result.message == "Session created and started"
        assert manager.get_session("s1").status == "running"

    def test_create_requires_project(self, handler):
        result = self._call(handler, {"type": "session.create", "session": {"project": {"repository": "x/y"}}})
        assert not result.success
        assert result.error == "Repository and requirements are required for session creation"

    def test_create_invalid_type(self, handler):
        result = self._call(handler, {"type": "session.create", "session": {"type": "magic", "project": PROJECT}})
        assert not result.success

    def test_start_waits_for_dependencies(self, handler):
        self._call(handler, {"type": "session.create", "session": {"id": "a", "project": PROJECT}})
        self._call(handler, {"type": "session.create", "session": {
            "id": "b", "project": PROJECT, "dependencies": ["a"],
        }})
        result = self._call(handler, {"type": "session.start", "sessionId": "b"})
        assert result.success
        assert result.data["waitingFor"] == ["a"]
        assert result.data["session"]["status"] == "pending"

    def test_start_behind_failed_dependency(self, handler, manager, executor):
        self._call(handler, {"type": "session.create", "autoStart": True, "session": {"id": "a", "project": PROJECT}})
        self._call(handler, {"type": "session.create", "session": {
            "id": "b", "project": PROJECT, "dependencies": ["a"],
        }})
        executor.finish(manager.get_session("a").container_id, 1)

        result = self._call(handler, {"type": "session.start", "sessionId": "b"})
        assert not result.success
        assert result.error == "Dependency a failed"
        assert result.data["session"]["status"] == "failed"

    def test_create_and_start_launch_failure(self, handler, manager, executor):
        executor.fail_start = True
        result = self._call(handler, {"type": "session.create", "autoStart": True, "session": {
            "id": "s1", "project": PROJECT,
        }})
        assert not result.success
        assert result.error == "docker run failed"
        assert manager.get_session("s1").status == "failed"

    def test_start_running_session_rejected(self, handler):
        self._call(handler, {"type": "session.create", "autoStart": True, "session": {"id": "a", "project": PROJECT}})
        result = self._call(handler, {"type": "session.start", "sessionId": "a"})
        assert not result.success
        assert result.error == "Session is already running"

    def test_get_unknown(self, handler):
        result = self._call(handler, {"type": "session.get", "sessionId": "missing"})
        assert not result.success
        assert result.error == "Session not found: missing"

    def test_list_by_orchestration(self, handler):
        for sid in ("o1-a", "o1-b", "o2-a"):
            self._call(handler, {"type": "session.create", "session": {"id": sid, "project": PROJECT}})
        result = self._call(handler, {"type": "session.list", "orchestrationId": "o1"})
        assert [s["id"] for s in result.data["sessions"]] == ["o1-a", "o1-b"]

    def test_output_and_recover(self, handler, manager, executor):
        self._call(handler, {"type": "session.create", "autoStart": True, "session": {"id": "a", "project": PROJECT}})
        pending = self._call(handler, {"type": "session.output", "sessionId": "a"})
        assert pending.data == {"status": "running", "output": None}

        executor.emit(manager.get_session("a").container_id, "Summary: done")
        executor.finish(manager.get_session("a").container_id, 1)
        output = self._call(handler, {"type": "session.output", "sessionId": "a"})
        assert output.data["status"] == "failed"
        assert output.data["output"]["summary"] == "done"

        recovered = self._call(handler, {"type": "session.recover", "sessionId": "a", "autoStart": True})
        assert recovered.data["session"]["id"] == "a-recovery-1"
        assert recovered.data["recoveredFrom"] == "a"
        assert manager.get_session("a-recovery-1").status == "running"

    def test_stop(self, handler, manager, executor):
        self._call(handler, {"type": "session.create", "autoStart": True, "session": {"id": "a", "project": PROJECT}})
        result = self._call(handler, {"type": "session.stop", "sessionId": "a"})
        assert result.success
        assert result.data["session"]["status"] == "failed"
        assert executor.stopped == [manager.get_session("a").container_id]

    def test_plain_session_request(self, handler, manager):
        result = self._call(handler, {"type": "session", "sessionId": "s9", "project": PROJECT})
        assert result.message == "Session started"
        assert manager.get_session("s9").type == "implementation"
        assert manager.get_session("s9").status == "running"

    def test_ignores_unknown_operations(self, handler):
        payload = _claude_payload({"type": "session.explode", "sessionId": "x"})
        assert not handler.can_handle(payload, _context())
