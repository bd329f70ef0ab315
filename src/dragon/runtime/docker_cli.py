"""Docker CLI adapter: login, pull and root filesystem export."""

from __future__ import annotations

import logging as py_logging
import subprocess
from pathlib import Path
from typing import Protocol

from dragon.errors import AuthenticationFailed, ExternalCommandFailed
from dragon.runtime.process import Runner, run_command

logger = py_logging.getLogger(__name__)


class ImageTool(Protocol):
    def login(self, registry: str, username: str, password: str) -> None: ...

    def pull(self, reference: str) -> None: ...

    def create(self, reference: str) -> str: ...

    def export(self, container_id: str, archive: Path) -> Path: ...

    def remove(self, container_id: str) -> None: ...


class DockerCli:
    def __init__(self, executable: str = "docker", *, runner: Runner = subprocess.run) -> None:
        self.executable = executable
        self.runner = runner

    def login(self, registry: str, username: str, password: str) -> None:
        run_command(
            [self.executable, "login", registry, "--username", username, "--password-stdin"],
            runner=self.runner,
            description=f"log in to registry {registry}",
            stdin=password,
            error_type=AuthenticationFailed,
        )
        logger.info("Logged in to registry=%s as username=%s", registry, username)

    def pull(self, reference: str) -> None:
        run_command(
            [self.executable, "pull", reference],
            runner=self.runner,
            description=f"pull image {reference}",
        )
        logger.info("Pulled image=%s", reference)

    def create(self, reference: str) -> str:
        result = run_command(
            [self.executable, "create", reference],
            runner=self.runner,
            description=f"create a container from {reference}",
        )
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise ExternalCommandFailed(
                f"Could not create a container from {reference}: `{self.executable} create` printed no container id.",
                hint=result.stderr.strip() or "Re-run with -vv to inspect the command output.",
            )
        container_id = lines[-1]
        logger.debug("Created container id=%s image=%s", container_id, reference)
        return container_id

    def export(self, container_id: str, archive: Path) -> Path:
        run_command(
            [self.executable, "export", "--output", str(archive), container_id],
            runner=self.runner,
            description=f"export container {container_id}",
        )
        logger.debug("Exported container id=%s archive=%s", container_id, archive)
        return archive

    def remove(self, container_id: str) -> None:
        run_command(
            [self.executable, "rm", "--force", container_id],
            runner=self.runner,
            description=f"remove container {container_id}",
        )
