"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    REGISTRY_ERROR = 5
    TERMINAL_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8


@dataclass
class DragonError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""
    environment: str = ""
    step: str = ""

    def describe(self) -> str:
        parts: list[str] = []
        if self.environment:
            parts.append(f"environment `{self.environment}`")
        if self.step:
            parts.append(f"step `{self.step}`")
        if not parts:
            return self.message
        return f"{self.message} ({', '.join(parts)})"

    def __str__(self) -> str:
        if self.hint:
            return f"{self.describe()} Hint: {self.hint}"
        return self.describe()


@dataclass
class MalformedReference(DragonError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class AuthenticationFailed(DragonError):
    code: ExitCode = ExitCode.REGISTRY_ERROR


@dataclass
class UnsupportedRegistry(DragonError):
    code: ExitCode = ExitCode.REGISTRY_ERROR


@dataclass
class TagResolutionFailed(DragonError):
    code: ExitCode = ExitCode.REGISTRY_ERROR


@dataclass
class ConfigCorrupt(DragonError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class DuplicateName(DragonError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class NoInstallPath(DragonError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class NoResolvedVersion(DragonError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class ImportFailed(DragonError):
    code: ExitCode = ExitCode.RUNTIME_ERROR


@dataclass
class ProfileSchemaInvalid(DragonError):
    code: ExitCode = ExitCode.TERMINAL_ERROR


@dataclass
class InstanceNotFound(DragonError):
    code: ExitCode = ExitCode.RUNTIME_ERROR


@dataclass
class ExternalCommandFailed(DragonError):
    code: ExitCode = ExitCode.RUNTIME_ERROR


@dataclass
class UnsupportedPlatform(DragonError):
    code: ExitCode = ExitCode.UNSUPPORTED_PLATFORM


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
