"""Host checks for flows that drive WSL."""

from __future__ import annotations

import platform
import shutil
from collections.abc import Callable

from dragon.errors import UnsupportedPlatform


def resolve_wsl_binary(
    *,
    system_name: str | None = None,
    wsl_path: str | None = None,
    which: Callable[[str], str | None] | None = None,
) -> str:
    system = system_name or platform.system()
    if system != "Windows":
        raise UnsupportedPlatform(
            "WSL environments can only be provisioned on Windows.",
            hint="Run dragon on a Windows 10/11 host with WSL2 enabled.",
        )

    which_func = which or shutil.which
    wsl_binary = wsl_path or which_func("wsl.exe")
    if not wsl_binary:
        raise UnsupportedPlatform(
            "wsl.exe was not found.",
            hint="Install WSL2 and ensure wsl.exe is available in PATH.",
        )
    return wsl_binary
