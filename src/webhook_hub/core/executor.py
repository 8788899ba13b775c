"""Sandboxed executor: Docker containers running the Claude Code CLI."""

import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from webhook_hub.config import Config

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, str], None]
ExitCallback = Callable[[int], None]

# Environment variables whose values must never appear in logs
SECRET_ENV_KEYS = ("GITHUB_TOKEN", "ANTHROPIC_API_KEY", "COMMAND")


class ExecutorError(RuntimeError):
    """Raised when a container operation fails."""


@dataclass
class ExecResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Executor(ABC):
    """Opaque sandboxed process host addressed by container id."""

    @abstractmethod
    def create(self, name: str) -> str:
        """Provision resources for a container and return its handle."""

    @abstractmethod
    def start(
        self,
        container_id: str,
        env: dict[str, str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> None:
        """Launch the container without waiting for it.

        ``on_output(stream, line)`` is called per line with stream
        "stdout" or "stderr"; ``on_exit(code)`` is called exactly once.
        """

    @abstractmethod
    def stop(self, container_id: str) -> None:
        ...

    @abstractmethod
    def exec(self, container_id: str, args: list[str]) -> ExecResult:
        ...

    @abstractmethod
    def logs(self, container_id: str) -> str:
        ...

    @abstractmethod
    def is_running(self, container_id: str) -> bool:
        ...

    @abstractmethod
    def run(self, name: str, env: dict[str, str], timeout: float | None = None) -> ExecResult:
        """Run a one-shot container to completion."""


def redact_args(args: list[str]) -> list[str]:
    """Copy of a docker argv with secret-looking values masked for logging."""
    redacted = []
    for arg in args:
        key, sep, _ = arg.partition("=")
        if sep and (key in SECRET_ENV_KEYS or "TOKEN" in key or "SECRET" in key or "KEY" in key):
            redacted.append(f"{key}=[REDACTED]")
        else:
            redacted.append(arg)
    return redacted


class DockerExecutor(Executor):
    """Runs sessions with the docker CLI.

    Environment variables are passed to ``docker run`` by name only; their
    values travel through the child process environment, so the command
    text is never part of argv.
    """

    def __init__(self, config: Config, docker_bin: str = "docker"):
        self.config = config
        self.docker_bin = docker_bin
        self._processes: dict[str, subprocess.Popen] = {}
        self._lock = threading.Lock()

    def _docker(self, args: list[str], timeout: float | None = None) -> ExecResult:
        cmd = [self.docker_bin] + args
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            raise ExecutorError(f"docker executable not found: {self.docker_bin}") from e
        except subprocess.TimeoutExpired as e:
            raise ExecutorError(f"docker {args[0]} timed out after {timeout}s") from e
        return ExecResult(result.returncode, result.stdout, result.stderr)

    def _check(self, args: list[str]) -> str:
        result = self._docker(args)
        if not result.ok:
            raise ExecutorError(f"docker {' '.join(args[:2])} failed: {result.stderr.strip()}")
        return result.stdout.strip()

    # ── Container lifecycle ──────────────────────────────────────────────────

    def create(self, name: str) -> str:
        self._check(["volume", "create", f"{name}-volume"])
        logger.info("Created container resources for %s", name)
        return name

    def build_run_args(self, name: str, env: dict[str, str], workspace: bool = True) -> list[str]:
        args = ["run", "--rm", "--name", name]
        args += self._security_args()
        if workspace:
            args += ["-v", f"{name}-volume:/home/user/project"]
        auth_dir = Path(self.config.auth_host_dir)
        args += ["-v", f"{auth_dir}:/home/node/.claude"]
        for key in env:
            args += ["-e", key]
        args.append(self.config.container_image)
        return args

    def _security_args(self) -> list[str]:
        return [
            "--cap-add=NET_ADMIN",
            "--cap-add=SYS_ADMIN",
            "--memory", self.config.container_memory_limit,
            "--cpu-shares", self.config.container_cpu_shares,
            "--pids-limit", self.config.container_pids_limit,
        ]

    def _child_env(self, env: dict[str, str]) -> dict[str, str]:
        return {**os.environ, **{k: v for k, v in env.items() if v is not None}}

    def start(self, container_id, env, on_output, on_exit) -> None:
        args = self.build_run_args(container_id, env)
        logger.info("Starting container: docker %s", " ".join(redact_args(args)))
        proc = subprocess.Popen(
            [self.docker_bin] + args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._child_env(env),
        )
        with self._lock:
            self._processes[container_id] = proc

        readers = [
            threading.Thread(
                target=self._pump, args=(proc.stdout, "stdout", on_output),
                name=f"{container_id}-stdout", daemon=True,
            ),
            threading.Thread(
                target=self._pump, args=(proc.stderr, "stderr", on_output),
                name=f"{container_id}-stderr", daemon=True,
            ),
        ]
        for t in readers:
            t.start()

        def wait():
            for t in readers:
                t.join()
            code = proc.wait()
            with self._lock:
                self._processes.pop(container_id, None)
            on_exit(code)

        threading.Thread(target=wait, name=f"{container_id}-wait", daemon=True).start()

    def _pump(self, stream, name: str, on_output: OutputCallback):
        for line in stream:
            line = line.rstrip("\n")
            if line.strip():
                on_output(name, line)
        stream.close()

    def stop(self, container_id: str) -> None:
        result = self._docker(["stop", container_id])
        if not result.ok:
            logger.warning("docker stop %s failed: %s", container_id, result.stderr.strip())
        with self._lock:
            proc = self._processes.get(container_id)
        if proc is not None and proc.poll() is None:
            proc.terminate()

    def exec(self, container_id: str, args: list[str]) -> ExecResult:
        return self._docker(["exec", container_id] + args)

    def logs(self, container_id: str) -> str:
        return self._check(["logs", container_id])

    def is_running(self, container_id: str) -> bool:
        result = self._docker(["inspect", "-f", "{{.State.Running}}", container_id])
        return result.ok and result.stdout.strip() == "true"

    def run(self, name: str, env: dict[str, str], timeout: float | None = None) -> ExecResult:
        args = self.build_run_args(name, env, workspace=False)
        logger.info("Running container: docker %s", " ".join(redact_args(args)))
        try:
            result = subprocess.run(
                [self.docker_bin] + args,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._child_env(env),
            )
        except subprocess.TimeoutExpired:
            logger.error("Container %s timed out after %ss, killing", name, timeout)
            self._docker(["kill", name])
            return ExecResult(124, "", f"Timed out after {timeout}s")
        return ExecResult(result.returncode, result.stdout, result.stderr)
