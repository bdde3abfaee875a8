"""Detached worker process launching with per-name log redirection."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from deepdex.contracts import (
    PM_PROCESS_ENV,
    PM_PROCESS_NAME_ENV,
    WORKER_COMMAND_ENV,
    WORKER_MODULE,
)

from .errors import SpawnError
from .liveness import SpawnedHandle

logger = logging.getLogger("deepdex.supervisor.spawner")


@dataclass(frozen=True)
class WorkerRequest:
    """Arguments for the worker entry point contract."""

    name: str
    strategy: str
    account: str
    config_path: str | None = None


def worker_prefix() -> list[str]:
    """Return the worker command prefix, overridable via DEEPDEX_WORKER_COMMAND."""
    override = str(os.getenv(WORKER_COMMAND_ENV, "")).strip()
    if override:
        return shlex.split(override)
    return [sys.executable, "-m", WORKER_MODULE]


def build_worker_command(request: WorkerRequest) -> list[str]:
    cmd = [
        *worker_prefix(),
        "--strategy", request.strategy,
        "--account", request.account,
    ]
    if request.config_path:
        cmd.extend(["--config", request.config_path])
    cmd.append("--yes")
    return cmd


def _detach_kwargs() -> dict[str, object]:
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS,
        }
    return {"start_new_session": True}


class ProcessSpawner:
    """Launch worker processes that outlive the supervisor invocation."""

    def __init__(
        self,
        *,
        command_builder: Callable[[WorkerRequest], list[str]] = build_worker_command,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        cwd: Path | None = None,
    ) -> None:
        self.command_builder = command_builder
        self.popen = popen
        self.cwd = cwd

    def build_environment(self, request: WorkerRequest, extra_env: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env[PM_PROCESS_ENV] = "true"
        env[PM_PROCESS_NAME_ENV] = request.name
        env["PYTHONUNBUFFERED"] = "1"
        if extra_env:
            env.update(extra_env)
        return env

    def spawn(
        self,
        request: WorkerRequest,
        log_file: Path,
        extra_env: Mapping[str, str] | None = None,
    ) -> SpawnedHandle:
        """Start the worker detached, appending stdout/stderr to log_file.

        Returns immediately; the caller never waits on the child.
        """
        cmd = self.command_builder(request)
        env = self.build_environment(request, extra_env)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Spawning %s: %s", request.name, " ".join(cmd))
        # The child keeps its own dup of the descriptor once Popen returns.
        with open(log_file, "ab") as log_handle:
            try:
                process = self.popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    env=env,
                    cwd=str(self.cwd) if self.cwd else None,
                    close_fds=True,
                    **_detach_kwargs(),
                )
            except OSError as exc:
                raise SpawnError(f"Failed to start process '{request.name}': {exc}") from exc
        logger.info("Spawned %s with PID %s", request.name, process.pid)
        return SpawnedHandle(process)
