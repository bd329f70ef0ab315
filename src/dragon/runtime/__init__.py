"""Adapters for the external tools dragon reconciles against."""

from .docker_cli import DockerCli, ImageTool
from .process import CommandResult, run_command
from .wsl_cli import VmRuntime, WslCli

__all__ = [
    "CommandResult",
    "DockerCli",
    "ImageTool",
    "run_command",
    "VmRuntime",
    "WslCli",
]
