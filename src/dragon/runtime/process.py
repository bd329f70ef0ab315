"""Blocking subprocess execution shared by the external tool adapters."""

from __future__ import annotations

import logging as py_logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from dragon.errors import DragonError, ExternalCommandFailed

logger = py_logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str


def decode_process_output(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if not value:
        return ""

    # wsl.exe may emit UTF-16LE in Windows consoles.
    if b"\x00" in value:
        for encoding in ("utf-16le", "utf-16"):
            try:
                return value.decode(encoding).replace("\ufeff", "")
            except UnicodeDecodeError:
                continue

    for encoding in ("utf-8", "cp1252"):
        try:
            return value.decode(encoding)
        except UnicodeDecodeError:
            continue
    return value.decode("utf-8", errors="replace")


def redact(command: Sequence[str], secrets: Sequence[str] = ()) -> list[str]:
    hidden = {item for item in secrets if item}
    return ["***" if part in hidden else part for part in command]


def run_command(
    command: Sequence[str],
    *,
    runner: Runner = subprocess.run,
    description: str,
    capture: bool = True,
    check: bool = True,
    stdin: str | None = None,
    secrets: Sequence[str] = (),
    timeout_seconds: float | None = None,
    error_type: type[DragonError] = ExternalCommandFailed,
) -> CommandResult:
    """Run ``command`` to completion and raise ``error_type`` on failure.

    ``capture=False`` leaves stdio attached to the console, which is what
    interactive primitives such as ``wsl.exe -d`` need.
    """
    args = list(command)
    shown = redact(args, secrets)
    logger.debug("Running %s command=%s", description, shown)
    options: dict[str, object] = {"check": False, "timeout": timeout_seconds}
    if capture:
        options.update(capture_output=True, text=False)
    if stdin is not None:
        options["input"] = stdin.encode("utf-8")
    try:
        completed = runner(args, **options)
    except FileNotFoundError as exc:
        logger.error("%s failed: executable not found command=%s", description, shown)
        raise error_type(
            f"Could not {description}: `{args[0]}` was not found.",
            hint=f"Install `{args[0]}` and make sure it is on PATH.",
        ) from exc
    except subprocess.TimeoutExpired as exc:
        logger.error("%s timed out command=%s", description, shown)
        raise error_type(
            f"Could not {description}: command timed out.",
            hint="Inspect the hanging process and retry.",
        ) from exc
    except OSError as exc:
        logger.error("%s failed to start command=%s error=%s", description, shown, exc)
        raise error_type(f"Could not {description}: {exc}.") from exc

    stdout = decode_process_output(completed.stdout)
    stderr = decode_process_output(completed.stderr)
    if check and completed.returncode != 0:
        detail = stderr.strip() or stdout.strip()
        logger.error(
            "%s failed returncode=%s stderr=%s",
            description,
            completed.returncode,
            detail,
        )
        raise error_type(
            f"Could not {description}: `{shown[0]}` exited with status {completed.returncode}.",
            hint=detail or "Re-run with -vv to inspect the command output.",
        )
    return CommandResult(
        command=shown,
        returncode=completed.returncode,
        stdout=stdout,
        stderr=stderr,
    )
