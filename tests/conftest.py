"""Shared test doubles."""

import pytest

from webhook_hub.core.executor import Executor, ExecutorError, ExecResult


class FakeExecutor(Executor):
    """In-memory executor whose containers only exit when a test says so."""

    def __init__(self):
        self.created: list[str] = []
        self.started: list[str] = []
        self.stopped: list[str] = []
        self.envs: dict[str, dict[str, str]] = {}
        self.runs: list[tuple[str, dict, float | None]] = []
        self.run_result = ExecResult(0, "Labels applied", "")
        self.fail_create = False
        self.fail_start = False
        self._callbacks = {}
        self._running: set[str] = set()

    def create(self, name: str) -> str:
        if self.fail_create:
            raise ExecutorError("docker volume create failed: no space left on device")
        self.created.append(name)
        return f"ctr-{name}"

    def start(self, container_id, env, on_output, on_exit) -> None:
        if self.fail_start:
            raise ExecutorError("docker run failed")
        self.started.append(container_id)
        self.envs[container_id] = dict(env)
        self._callbacks[container_id] = (on_output, on_exit)
        self._running.add(container_id)

    def stop(self, container_id: str) -> None:
        self.stopped.append(container_id)
        self._running.discard(container_id)

    def exec(self, container_id: str, args: list[str]) -> ExecResult:
        return ExecResult(0, "", "")

    def logs(self, container_id: str) -> str:
        return ""

    def is_running(self, container_id: str) -> bool:
        return container_id in self._running

    def run(self, name: str, env: dict[str, str], timeout: float | None = None) -> ExecResult:
        self.runs.append((name, dict(env), timeout))
        return self.run_result

    # ── Test controls ────────────────────────────────────────────────────────

    def emit(self, container_id: str, line: str, stream: str = "stdout") -> None:
        self._callbacks[container_id][0](stream, line)

    def finish(self, container_id: str, code: int = 0) -> None:
        self._running.discard(container_id)
        self._callbacks[container_id][1](code)


@pytest.fixture
def executor():
    return FakeExecutor()
