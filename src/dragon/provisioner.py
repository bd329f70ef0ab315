"""Export a Docker image and import it as a WSL distribution."""

from __future__ import annotations

import logging as py_logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dragon.errors import ExternalCommandFailed
from dragon.runtime.docker_cli import ImageTool
from dragon.runtime.wsl_cli import VmRuntime

logger = py_logging.getLogger(__name__)

_ARCHIVE_NAME = "rootfs.tar"


@dataclass(frozen=True)
class ProvisionResult:
    identity: str
    install_dir: Path
    replaced: bool


class VmProvisioner:
    """Materializes an image as a WSL distribution named after its identity.

    Provisioning is replace-if-exists: a distribution already registered under
    the identity is unregistered before the new one is imported. There is no
    staging step, so a failure between the two leaves the identity absent.
    """

    def __init__(
        self,
        images: ImageTool,
        runtime: VmRuntime,
        *,
        temp_root: str | Path | None = None,
    ) -> None:
        self.images = images
        self.runtime = runtime
        self.temp_root = temp_root

    def export_image(self, reference: str, workdir: Path) -> Path:
        container_id = self.images.create(reference)
        archive = workdir / _ARCHIVE_NAME
        try:
            return self.images.export(container_id, archive)
        finally:
            self._remove_container(container_id)

    def _remove_container(self, container_id: str) -> None:
        try:
            self.images.remove(container_id)
        except ExternalCommandFailed as exc:
            logger.warning("Leaving export container %s behind: %s", container_id, exc)

    def replace_if_exists(self, identity: str) -> bool:
        if identity not in self.runtime.list():
            return False
        logger.info("WSL distribution %s exists; unregistering before import", identity)
        self.runtime.unregister(identity)
        return True

    def create_install_directory(self, install_path: Path, identity: str) -> Path:
        install_dir = install_path / identity
        install_dir.mkdir(parents=True, exist_ok=True)
        return install_dir

    def import_instance(self, identity: str, install_dir: Path, archive: Path) -> None:
        self.runtime.import_instance(identity, install_dir, archive)

    def provision(self, identity: str, reference: str, install_path: str | Path) -> ProvisionResult:
        logger.debug("Provisioning identity=%s image=%s install_path=%s", identity, reference, install_path)
        with tempfile.TemporaryDirectory(prefix="dragon-export-", dir=self.temp_root) as workdir:
            archive = self.export_image(reference, Path(workdir))
            replaced = self.replace_if_exists(identity)
            install_dir = self.create_install_directory(Path(install_path), identity)
            self.import_instance(identity, install_dir, archive)
        logger.info("Provisioned WSL distribution %s from %s", identity, reference)
        return ProvisionResult(identity=identity, install_dir=install_dir, replaced=replaced)
