"""wsl.exe adapter: distribution listing, import, unregister and launch."""

from __future__ import annotations

import logging as py_logging
import subprocess
from pathlib import Path
from typing import Protocol

from dragon.errors import ExternalCommandFailed, ImportFailed, InstanceNotFound
from dragon.runtime.process import Runner, run_command

logger = py_logging.getLogger(__name__)

_NO_DISTRIBUTIONS_MARKERS = (
    "has no installed distributions",
    "wsl_e_default_distro_not_found",
)


class VmRuntime(Protocol):
    def list(self) -> list[str]: ...

    def import_instance(self, identity: str, install_dir: Path, archive: Path) -> None: ...

    def unregister(self, identity: str) -> None: ...

    def run(self, identity: str) -> int: ...


def parse_distribution_list(output: str) -> list[str]:
    names: list[str] = []
    for line in output.splitlines():
        name = line.strip().strip("\x00")
        if name and name not in names:
            names.append(name)
    return names


class WslCli:
    def __init__(self, executable: str = "wsl.exe", *, runner: Runner = subprocess.run) -> None:
        self.executable = executable
        self.runner = runner

    def list(self) -> list[str]:
        try:
            result = run_command(
                [self.executable, "--list", "--quiet"],
                runner=self.runner,
                description="list WSL distributions",
            )
        except ExternalCommandFailed as exc:
            if any(marker in exc.hint.lower() for marker in _NO_DISTRIBUTIONS_MARKERS):
                logger.debug("No WSL distributions are installed")
                return []
            raise
        distributions = parse_distribution_list(result.stdout)
        logger.debug("Discovered %s WSL distributions", len(distributions))
        return distributions

    def import_instance(self, identity: str, install_dir: Path, archive: Path) -> None:
        run_command(
            [
                self.executable,
                "--import",
                identity,
                str(install_dir),
                str(archive),
                "--version",
                "2",
            ],
            runner=self.runner,
            description=f"import WSL distribution {identity}",
            error_type=ImportFailed,
        )
        logger.info("Imported WSL distribution=%s install_dir=%s", identity, install_dir)

    def unregister(self, identity: str) -> None:
        run_command(
            [self.executable, "--unregister", identity],
            runner=self.runner,
            description=f"unregister WSL distribution {identity}",
        )
        logger.info("Unregistered WSL distribution=%s", identity)

    def run(self, identity: str) -> int:
        if identity not in self.list():
            raise InstanceNotFound(
                f"WSL distribution `{identity}` is not registered.",
                hint="Run `dragon upgrade` (or `dragon new`) to provision it.",
            )
        result = run_command(
            [self.executable, "--distribution", identity],
            runner=self.runner,
            description=f"start WSL distribution {identity}",
            capture=False,
            check=False,
        )
        logger.debug("WSL session for %s exited with status %s", identity, result.returncode)
        return result.returncode
