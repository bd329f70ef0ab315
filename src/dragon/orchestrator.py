"""Reconciliation flows: new, pull, update, upgrade, run and list."""

from __future__ import annotations

import logging as py_logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from dragon.config import ConfigRepository, ConfigStore, EnvironmentRecord, RegistryCredential
from dragon.errors import (
    DragonError,
    DuplicateName,
    ExitCode,
    InstanceNotFound,
    NoInstallPath,
    NoResolvedVersion,
    UnsupportedRegistry,
)
from dragon.image.reference import ImageReference, compute_identity, parse_image_reference
from dragon.provisioner import VmProvisioner
from dragon.registry.acr import RegistryClient, is_supported_registry, resolve_latest_tag
from dragon.runtime.docker_cli import ImageTool
from dragon.runtime.wsl_cli import VmRuntime
from dragon.terminal.windows_terminal import build_launch_command, ensure_profile

logger = py_logging.getLogger(__name__)


@dataclass
class Toolchain:
    images: ImageTool
    runtime: VmRuntime
    registry: RegistryClient


class NewEnvironmentRequest(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    name: str
    image: str
    install_path: str | None = None
    username: str | None = None
    password: str | None = None
    tenant: str | None = None


@dataclass(frozen=True)
class UpdateOutcome:
    name: str
    previous: str | None
    resolved: str

    @property
    def changed(self) -> bool:
        return self.previous != self.resolved


@dataclass(frozen=True)
class UpgradeOutcome:
    name: str
    identity: str
    image: str
    provisioned: bool


@dataclass(frozen=True)
class EnvironmentStatus:
    name: str
    image: str
    identity: str
    resolved_version: str | None

    @property
    def upgrade_available(self) -> bool:
        if self.resolved_version is None:
            return False
        return parse_image_reference(self.image).effective_tag != self.resolved_version


@contextmanager
def reconcile_step(step: str, environment: str = "") -> Iterator[None]:
    """Tag any DragonError raised inside with the environment and step."""
    logger.debug("step=%s environment=%s", step, environment or "-")
    try:
        yield
    except DragonError as exc:
        if not exc.step:
            exc.step = step
        if not exc.environment:
            exc.environment = environment
        raise


def _validate_name(name: str) -> None:
    if not name.strip() or any(char.isspace() for char in name):
        raise DragonError(
            f"Invalid environment name `{name}`.",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use a non-empty name without whitespace.",
        )


class Reconciler:
    def __init__(
        self,
        repository: ConfigRepository,
        tools: Toolchain,
        *,
        terminal_settings: str | Path | None = None,
        launcher: str = "dragon",
        provisioner: VmProvisioner | None = None,
    ) -> None:
        self.repository = repository
        self.tools = tools
        self.terminal_settings = terminal_settings
        self.launcher = launcher
        self.provisioner = provisioner or VmProvisioner(tools.images, tools.runtime)

    @staticmethod
    def _selected(store: ConfigStore, target: str | None) -> Iterator[EnvironmentRecord]:
        for record in store.environments:
            if target is not None and record.name != target:
                logger.debug("Skipping environment %s; target is %s", record.name, target)
                continue
            yield record

    def _pull(self, store: ConfigStore, reference: ImageReference) -> None:
        host = reference.registry_host
        credential = store.find_credential(host) if host else None
        if credential is not None:
            self.tools.images.login(credential.host, credential.username, credential.password)
        self.tools.images.pull(str(reference))

    def _install_path(self, store: ConfigStore, request: NewEnvironmentRequest) -> Path:
        if request.install_path:
            return Path(request.install_path).expanduser()
        if store.default_install_path:
            return Path(store.default_install_path).expanduser() / request.name
        raise NoInstallPath(
            "No install path is available.",
            hint="Pass --install-path or set default_install_path in the config file.",
        )

    def _ensure_profile(self, record: EnvironmentRecord) -> bool:
        if self.terminal_settings is None:
            logger.warning(
                "Windows Terminal settings not found; skipping profile for %s",
                record.name,
            )
            return False
        if record.terminal_profile_id is None:
            record.terminal_profile_id = str(uuid.uuid4())
        launch_command = build_launch_command(
            record.name,
            config_path=self.repository.path,
            executable=self.launcher,
        )
        return ensure_profile(
            self.terminal_settings,
            record.terminal_profile_id,
            record.name,
            launch_command,
        )

    def new(self, request: NewEnvironmentRequest) -> EnvironmentRecord:
        name = request.name
        store = self.repository.load()

        with reconcile_step("validate-name", name):
            _validate_name(name)
            if store.find_by_name(name) is not None:
                raise DuplicateName(
                    f"An environment named `{name}` already exists.",
                    hint="Pick another name or run `dragon upgrade` for the existing one.",
                )

        with reconcile_step("resolve-reference", name):
            reference = parse_image_reference(request.image).normalized()

        with reconcile_step("register-credential", name):
            if bool(request.username) != bool(request.password):
                raise DragonError(
                    "Registry credentials need both a username and a password.",
                    code=ExitCode.VALIDATION_ERROR,
                    hint="Pass --username and --password together, or neither.",
                )
            if request.username and request.password:
                if reference.registry_host is None:
                    raise DragonError(
                        "Credentials need a registry in the image reference.",
                        code=ExitCode.VALIDATION_ERROR,
                        hint="Use the form registry/repository[:tag].",
                    )
                added = store.add_credential(
                    RegistryCredential(
                        host=reference.registry_host,
                        username=request.username,
                        password=request.password,
                        tenant=request.tenant,
                    )
                )
                logger.info("Credential for %s %s", reference.registry_host, "added" if added else "kept")

        with reconcile_step("pull-image", name):
            self._pull(store, reference)

        identity = compute_identity(name, reference.effective_tag)

        with reconcile_step("determine-install-path", name):
            install_path = self._install_path(store, request)

        with reconcile_step("provision", name):
            self.provisioner.provision(identity, str(reference), install_path)

        record = EnvironmentRecord(
            name=name,
            image=str(reference),
            install_path=str(install_path),
            terminal_profile_id=str(uuid.uuid4()),
        )
        with reconcile_step("persist-record", name):
            store.add_environment(record)
            self.repository.save(store)

        with reconcile_step("register-terminal-profile", name):
            self._ensure_profile(record)

        logger.info("Created environment %s as %s", name, identity)
        return record

    def pull(self, target: str | None = None) -> list[str]:
        store = self.repository.load()
        pulled: list[str] = []
        for record in self._selected(store, target):
            with reconcile_step("pull-image", record.name):
                self._pull(store, parse_image_reference(record.image))
            pulled.append(record.name)
        return pulled

    def update(self, target: str | None = None) -> list[UpdateOutcome]:
        store = self.repository.load()
        outcomes: list[UpdateOutcome] = []
        for record in self._selected(store, target):
            reference = parse_image_reference(record.image)
            with reconcile_step("resolve-version", record.name):
                host = reference.registry_host
                if not is_supported_registry(host):
                    raise UnsupportedRegistry(
                        f"Cannot resolve versions for `{record.image}`.",
                        hint="Version resolution only works for *.azurecr.io images.",
                    )
                tag = resolve_latest_tag(
                    host or "",
                    reference.repository_path,
                    store.find_credential(host or ""),
                    client=self.tools.registry,
                )

            outcome = UpdateOutcome(name=record.name, previous=record.resolved_version, resolved=tag)
            if outcome.changed:
                record.resolved_version = tag
                with reconcile_step("persist-record", record.name):
                    self.repository.save(store)
                logger.info("Environment %s resolved to %s", record.name, tag)
            outcomes.append(outcome)
        return outcomes

    def upgrade(self, target: str | None = None, *, force: bool = False) -> list[UpgradeOutcome]:
        store = self.repository.load()
        outcomes: list[UpgradeOutcome] = []
        for record in self._selected(store, target):
            name = record.name
            with reconcile_step("check-resolved-version", name):
                if not record.resolved_version:
                    raise NoResolvedVersion(
                        f"Environment `{name}` has no resolved version.",
                        hint=f"Run `dragon update -w {name}` first.",
                    )

            current = parse_image_reference(record.image)
            desired = current.with_tag(record.resolved_version)
            identity = compute_identity(name, record.resolved_version)

            with reconcile_step("inspect-instance", name):
                up_to_date = (
                    not force
                    and current.tag == desired.tag
                    and identity in self.tools.runtime.list()
                )

            if up_to_date:
                logger.info("Environment %s is already at %s", name, identity)
            else:
                with reconcile_step("pull-image", name):
                    self._pull(store, desired)
                with reconcile_step("provision", name):
                    self.provisioner.provision(identity, str(desired), Path(record.install_path))

            record.image = str(desired)
            if record.terminal_profile_id is None:
                record.terminal_profile_id = str(uuid.uuid4())
            with reconcile_step("persist-record", name):
                self.repository.save(store)

            with reconcile_step("register-terminal-profile", name):
                self._ensure_profile(record)

            outcomes.append(
                UpgradeOutcome(
                    name=name,
                    identity=identity,
                    image=record.image,
                    provisioned=not up_to_date,
                )
            )
        return outcomes

    def run(self, name: str) -> int:
        store = self.repository.load()
        record = store.find_by_name(name)
        if record is None:
            raise InstanceNotFound(
                f"No environment named `{name}` is configured.",
                hint="Run `dragon list` to see configured environments.",
                environment=name,
                step="find-environment",
            )
        identity = compute_identity(name, parse_image_reference(record.image).effective_tag)
        with reconcile_step("run-instance", name):
            return self.tools.runtime.run(identity)

    def describe(self) -> list[EnvironmentStatus]:
        store = self.repository.load()
        return [
            EnvironmentStatus(
                name=record.name,
                image=record.image,
                identity=compute_identity(
                    record.name,
                    parse_image_reference(record.image).effective_tag,
                ),
                resolved_version=record.resolved_version,
            )
            for record in store.environments
        ]
