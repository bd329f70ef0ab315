"""Environment store: TOML document loading/saving."""

from __future__ import annotations

import logging as py_logging
import os
import re
import sys
import tempfile
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from dragon.errors import ConfigCorrupt, DragonError, DuplicateName
from dragon.image.reference import parse_image_reference

logger = py_logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/dragon/config.toml")
CONFIG_PATH_ENV = "DRAGON_CONFIG"
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


class RegistryCredential(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    host: str
    username: str
    password: str
    tenant: str | None = None

    @field_validator("host", "username")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class EnvironmentRecord(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    name: str
    image: str
    install_path: str
    terminal_profile_id: str | None = None
    resolved_version: str | None = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        name = value.strip()
        if not name or any(char.isspace() for char in name):
            raise ValueError(f"Invalid environment name: {value!r}")
        return name

    @field_validator("image")
    @classmethod
    def _normalize_image(cls, value: str) -> str:
        try:
            return str(parse_image_reference(value).normalized())
        except DragonError as exc:
            raise ValueError(exc.message) from exc


class ConfigStore(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    default_install_path: str | None = None
    environments: list[EnvironmentRecord] = Field(default_factory=list)
    registry_credentials: list[RegistryCredential] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_unique_keys(self) -> ConfigStore:
        names = [record.name for record in self.environments]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate environment names: {', '.join(duplicates)}")
        hosts = [credential.host for credential in self.registry_credentials]
        duplicates = sorted({host for host in hosts if hosts.count(host) > 1})
        if duplicates:
            raise ValueError(f"Duplicate registry credentials: {', '.join(duplicates)}")
        return self

    def find_by_name(self, name: str) -> EnvironmentRecord | None:
        for record in self.environments:
            if record.name == name:
                return record
        return None

    def find_credential(self, host: str) -> RegistryCredential | None:
        for credential in self.registry_credentials:
            if credential.host == host:
                return credential
        return None

    def add_environment(self, record: EnvironmentRecord) -> None:
        if self.find_by_name(record.name) is not None:
            raise DuplicateName(
                f"An environment named `{record.name}` already exists.",
                hint="Pick another name or run `dragon upgrade` for the existing one.",
            )
        # newest first
        self.environments.insert(0, record)

    def add_credential(self, credential: RegistryCredential) -> bool:
        """Register ``credential`` unless its host already has one."""
        if self.find_credential(credential.host) is not None:
            logger.debug("Keeping existing credential for host=%s", credential.host)
            return False
        self.registry_credentials.append(credential)
        return True


def get_config_path(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> Path:
    if path is not None:
        return Path(path).expanduser()
    env = os.environ if environ is None else environ
    override = env.get(CONFIG_PATH_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _escape(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    # TOML basic strings reject the remaining control characters verbatim.
    return _CONTROL_CHARS.sub(lambda match: f"\\u{ord(match.group()):04X}", escaped)


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _table(header: str, payload: dict[str, object]) -> list[str]:
    lines = ["", f"[[{header}]]"]
    for key, value in payload.items():
        if value is None:
            continue
        lines.append(f"{key} = {_toml_scalar(value)}")
    return lines


def render_config(store: ConfigStore) -> str:
    lines: list[str] = []
    if store.default_install_path is not None:
        lines.append(f"default_install_path = {_toml_scalar(store.default_install_path)}")
    for record in store.environments:
        lines.extend(
            _table(
                "environments",
                {
                    "name": record.name,
                    "image": record.image,
                    "resolved_version": record.resolved_version,
                    "terminal_profile_id": record.terminal_profile_id,
                    "install_path": record.install_path,
                },
            )
        )
    for credential in store.registry_credentials:
        lines.extend(
            _table(
                "registry_credentials",
                {
                    "host": credential.host,
                    "username": credential.username,
                    "password": credential.password,
                    "tenant": credential.tenant,
                },
            )
        )
    text = "\n".join(lines).lstrip("\n")
    return text + "\n" if text else ""


def load_config(path: str | Path | None = None) -> ConfigStore:
    resolved = get_config_path(path)
    if not resolved.exists():
        logger.debug("Config %s does not exist; starting from an empty store", resolved)
        return ConfigStore()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        logger.error("Config %s is not valid TOML: %s", resolved, exc)
        raise ConfigCorrupt(
            f"Config file {resolved} is not valid TOML.",
            hint=str(exc),
        ) from exc
    except OSError as exc:
        logger.error("Config %s could not be read: %s", resolved, exc)
        raise ConfigCorrupt(f"Config file {resolved} could not be read.", hint=str(exc)) from exc

    try:
        store = ConfigStore.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in exc.errors()
        )
        logger.error("Config %s failed validation: %s", resolved, problems)
        raise ConfigCorrupt(
            f"Config file {resolved} has an invalid structure.",
            hint=problems,
        ) from exc
    logger.debug(
        "Loaded config %s environments=%s credentials=%s",
        resolved,
        len(store.environments),
        len(store.registry_credentials),
    )
    return store


def write_atomically(path: Path, content: str, *, mode: int | None = None) -> None:
    """Replace ``path`` with ``content`` through a sibling temp file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    try:
        with handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            with suppress(OSError):
                os.chmod(handle.name, mode)
        os.replace(handle.name, path)
    except BaseException:
        with suppress(OSError):
            os.unlink(handle.name)
        raise


def save_config(store: ConfigStore, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    write_atomically(resolved, render_config(store), mode=0o600)
    logger.debug("Saved config %s environments=%s", resolved, len(store.environments))
    return resolved


class ConfigRepository:
    """Handle on one config document, passed explicitly into each flow."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = get_config_path(path)

    def load(self) -> ConfigStore:
        return load_config(self.path)

    def save(self, store: ConfigStore) -> Path:
        return save_config(store, self.path)
