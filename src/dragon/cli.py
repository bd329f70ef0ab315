"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import os
import shutil
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from .config import ConfigRepository, get_config_path
from .errors import DragonError, ExitCode, user_facing_error
from .logging import configure_logging, default_log_path, level_from_verbosity
from .orchestrator import NewEnvironmentRequest, Reconciler, Toolchain
from .registry.acr import AzureCli
from .runtime.docker_cli import DockerCli
from .runtime.host import resolve_wsl_binary
from .runtime.wsl_cli import WslCli
from .terminal.windows_terminal import resolve_settings_path

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_WSL_COMMANDS = {"new", "upgrade", "run"}

ToolchainFactory = Callable[[str], Toolchain]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _add_config_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to the environments file (default: $DRAGON_CONFIG or ~/.config/dragon/config.toml).",
    )


def _add_terminal_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-t",
        "--wtconfig",
        type=Path,
        default=None,
        help="Windows Terminal settings.json (default: $DRAGON_WT_SETTINGS or auto-detected).",
    )


def _add_target_flag(parser: argparse.ArgumentParser, *, required: bool = False) -> None:
    parser.add_argument(
        "-w",
        "--wsl",
        dest="target",
        required=required,
        default=None,
        help="Environment name as configured; all environments when omitted.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dragon",
        description="Manages Docker generated WSL2 distributions and Windows Terminal profiles.",
    )
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (-v, -vv).",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    new = commands.add_parser("new", help="Create a WSL distribution from a Docker image.")
    _add_config_flag(new)
    _add_terminal_flag(new)
    _add_target_flag(new, required=True)
    new.add_argument("-i", "--image", required=True, help="[registry/]repository[:tag]")
    new.add_argument("--install-path", default=None, help="Directory holding the distribution disk.")
    new.add_argument("--username", default=None, help="Registry username to store.")
    new.add_argument("--password", default=None, help="Registry password to store.")
    new.add_argument("--tenant", default=None, help="Azure tenant of the service principal.")

    pull = commands.add_parser("pull", help="Pull the configured image(s).")
    _add_config_flag(pull)
    _add_target_flag(pull)

    update = commands.add_parser("update", help="Resolve the newest tag from Azure Container Registry.")
    _add_config_flag(update)
    _add_target_flag(update)

    upgrade = commands.add_parser("upgrade", help="Provision the resolved version and register its profile.")
    _add_config_flag(upgrade)
    _add_terminal_flag(upgrade)
    _add_target_flag(upgrade)
    upgrade.add_argument(
        "--force",
        action="store_true",
        help="Re-provision even when the resolved version is already installed.",
    )

    run_parser = commands.add_parser("run", help="Start a shell in an environment.")
    _add_config_flag(run_parser)
    _add_target_flag(run_parser, required=True)

    list_parser = commands.add_parser("list", help="Show configured environments.")
    _add_config_flag(list_parser)
    return parser


def _executable(env_var: str, default: str, environ: Mapping[str, str]) -> str:
    override = environ.get(env_var, "").strip()
    if override:
        return override
    return shutil.which(default) or default


def build_toolchain(command: str, environ: Mapping[str, str] | None = None) -> Toolchain:
    env = os.environ if environ is None else environ
    wsl_binary = _executable("DRAGON_WSL", "wsl.exe", env)
    if command in _WSL_COMMANDS and "DRAGON_WSL" not in env:
        wsl_binary = resolve_wsl_binary()
    return Toolchain(
        images=DockerCli(_executable("DRAGON_DOCKER", "docker", env)),
        runtime=WslCli(wsl_binary),
        registry=AzureCli(_executable("DRAGON_AZ", "az", env)),
    )


def run_command(namespace: argparse.Namespace, reconciler: Reconciler) -> int:
    command = namespace.command
    if command == "new":
        record = reconciler.new(
            NewEnvironmentRequest(
                name=namespace.target,
                image=namespace.image,
                install_path=namespace.install_path,
                username=namespace.username,
                password=namespace.password,
                tenant=namespace.tenant,
            )
        )
        print(f"Environment `{record.name}` created from {record.image} in {record.install_path}.")
        return int(ExitCode.SUCCESS)

    if command == "pull":
        pulled = reconciler.pull(namespace.target)
        for name in pulled:
            print(f"Pulled image for `{name}`.")
        return int(ExitCode.SUCCESS)

    if command == "update":
        for outcome in reconciler.update(namespace.target):
            if outcome.changed:
                print(f"Environment `{outcome.name}` will be upgraded to tag `{outcome.resolved}`.")
            else:
                print(f"Environment `{outcome.name}` already tracks tag `{outcome.resolved}`.")
        return int(ExitCode.SUCCESS)

    if command == "upgrade":
        for outcome in reconciler.upgrade(namespace.target, force=namespace.force):
            verb = "provisioned" if outcome.provisioned else "already installed"
            print(f"Environment `{outcome.name}`: {outcome.identity} {verb}.")
        return int(ExitCode.SUCCESS)

    if command == "run":
        return reconciler.run(namespace.target)

    if command == "list":
        for status in reconciler.describe():
            marker = " (upgrade available)" if status.upgrade_available else ""
            resolved = status.resolved_version or "-"
            print(f"{status.name}\t{status.image}\t{status.identity}\t{resolved}{marker}")
        return int(ExitCode.SUCCESS)

    raise DragonError(
        f"Unknown command: {command}",
        code=ExitCode.INVALID_ARGS,
        hint="Run `dragon --help`.",
    )


def main(
    argv: Sequence[str] | None = None,
    *,
    toolchain_factory: ToolchainFactory | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging("WARN", log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = namespace.log_level or level_from_verbosity(namespace.verbose)
    logger = configure_logging(level=level, log_file=log_path)
    env = dict(os.environ if environ is None else environ)

    try:
        repository = ConfigRepository(get_config_path(namespace.config, env))
        logger.debug("Starting command=%s config=%s", namespace.command, repository.path)
        factory = toolchain_factory or (lambda command: build_toolchain(command, env))
        reconciler = Reconciler(
            repository,
            factory(namespace.command),
            terminal_settings=resolve_settings_path(getattr(namespace, "wtconfig", None), env),
        )
        return run_command(namespace, reconciler)
    except DragonError as exc:
        logger.error(
            "Handled DragonError (code=%s): %s",
            int(exc.code),
            exc.describe(),
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.describe(), hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(
            user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"),
            file=sys.stderr,
        )
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
