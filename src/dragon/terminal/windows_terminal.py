"""Windows Terminal settings: profile lookup and idempotent registration."""

from __future__ import annotations

import json
import logging as py_logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from dragon.config import write_atomically
from dragon.errors import ProfileSchemaInvalid

logger = py_logging.getLogger(__name__)

SETTINGS_PATH_ENV = "DRAGON_WT_SETTINGS"


def strip_jsonc_comments(raw: str) -> str:
    """Remove // and /* */ comments while preserving JSON strings."""
    output: list[str] = []
    index = 0
    in_string = False
    escaped = False
    text_length = len(raw)
    while index < text_length:
        char = raw[index]
        if in_string:
            output.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            index += 1
            continue
        if char == '"':
            in_string = True
            output.append(char)
            index += 1
            continue
        if raw.startswith("//", index):
            index += 2
            while index < text_length and raw[index] not in "\r\n":
                index += 1
            continue
        if raw.startswith("/*", index):
            end = raw.find("*/", index + 2)
            index = text_length if end == -1 else end + 2
            continue
        output.append(char)
        index += 1
    return "".join(output)


def fix_json_trailing_commas(raw: str) -> str:
    """Remove trailing commas before object/array terminators."""
    output: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(raw):
        if in_string:
            output.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "," and raw[index + 1 :].lstrip(" \t\r\n")[:1] in ("}", "]"):
            continue
        output.append(char)
    return "".join(output)


def candidate_settings_paths(environ: dict[str, str] | None = None) -> list[Path]:
    """Windows Terminal settings locations: stable, preview, unpackaged."""
    env = os.environ if environ is None else environ
    local_app_data = env.get("LOCALAPPDATA", "").strip()
    if not local_app_data:
        return []
    base = Path(local_app_data)
    packages = base / "Packages"
    return [
        packages / "Microsoft.WindowsTerminal_8wekyb3d8bbwe" / "LocalState" / "settings.json",
        packages / "Microsoft.WindowsTerminalPreview_8wekyb3d8bbwe" / "LocalState" / "settings.json",
        base / "Microsoft" / "Windows Terminal" / "settings.json",
    ]


def resolve_settings_path(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> Path | None:
    if path is not None:
        return Path(path).expanduser()
    env = os.environ if environ is None else environ
    override = env.get(SETTINGS_PATH_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    for candidate in candidate_settings_paths(env):
        if candidate.exists():
            return candidate
    return None


def format_profile_guid(profile_id: str) -> str:
    return "{" + profile_id.strip().strip("{}").lower() + "}"


def build_launch_command(
    name: str,
    *,
    config_path: str | Path | None = None,
    executable: str = "dragon",
) -> str:
    argv = [executable, "run"]
    if config_path is not None:
        argv.extend(["-c", str(config_path)])
    argv.extend(["-w", name])
    return subprocess.list2cmdline(argv)


class TerminalProfile(BaseModel):
    """One entry of ``profiles.list``; unknown keys ride along untouched."""

    model_config = ConfigDict(extra="allow")

    guid: str | None = None
    name: str | None = None
    hidden: bool | None = None
    commandline: str | None = None

    def matches(self, profile_id: str) -> bool:
        if not self.guid:
            return False
        return self.guid.lower() == format_profile_guid(profile_id)


@dataclass
class TerminalSettings:
    path: Path
    payload: dict[str, object]
    profiles: list[object]

    @classmethod
    def load(cls, path: str | Path) -> TerminalSettings:
        settings_path = Path(path)
        try:
            raw = settings_path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            logger.error("Could not read terminal settings path=%s error=%s", settings_path, exc)
            raise ProfileSchemaInvalid(
                f"Could not read Windows Terminal settings {settings_path}.",
                hint=str(exc),
            ) from exc
        try:
            payload = json.loads(fix_json_trailing_commas(strip_jsonc_comments(raw)))
        except json.JSONDecodeError as exc:
            logger.error("Terminal settings are not valid JSON path=%s error=%s", settings_path, exc)
            raise ProfileSchemaInvalid(
                f"Windows Terminal settings {settings_path} are not valid JSON.",
                hint=str(exc),
            ) from exc

        profiles = payload.get("profiles") if isinstance(payload, dict) else None
        profile_list = profiles.get("list") if isinstance(profiles, dict) else None
        if not isinstance(profile_list, list):
            logger.error("Terminal settings lack a profiles.list array path=%s", settings_path)
            raise ProfileSchemaInvalid(
                f"Windows Terminal settings {settings_path} do not contain a `profiles.list` array.",
                hint="Open the settings once in Windows Terminal so it writes the default layout.",
            )
        return cls(path=settings_path, payload=payload, profiles=profile_list)

    def find_profile(self, profile_id: str) -> TerminalProfile | None:
        for entry in self.profiles:
            if not isinstance(entry, dict):
                continue
            try:
                profile = TerminalProfile.model_validate(entry)
            except ValidationError:
                logger.debug("Ignoring profile with unexpected field types: %s", entry.get("name"))
                continue
            if profile.matches(profile_id):
                return profile
        return None

    def prepend_profile(self, profile: TerminalProfile) -> None:
        self.profiles.insert(0, profile.model_dump(exclude_none=True))

    def save(self) -> Path:
        write_atomically(self.path, json.dumps(self.payload, ensure_ascii=False, indent=4) + "\n")
        return self.path


def ensure_profile(
    settings_path: str | Path,
    profile_id: str,
    display_name: str,
    launch_command: str,
) -> bool:
    """Add a launcher profile unless one with ``profile_id`` already exists.

    Existing profiles are never rewritten, so a changed ``launch_command`` is
    not propagated. Returns ``True`` when a profile was added.
    """
    settings = TerminalSettings.load(settings_path)
    existing = settings.find_profile(profile_id)
    if existing is not None:
        logger.debug(
            "Terminal profile already present guid=%s name=%s",
            existing.guid,
            existing.name,
        )
        return False

    settings.prepend_profile(
        TerminalProfile(
            guid=format_profile_guid(profile_id),
            hidden=False,
            name=display_name,
            commandline=launch_command,
        )
    )
    settings.save()
    logger.info(
        "Registered terminal profile name=%s guid=%s path=%s",
        display_name,
        format_profile_guid(profile_id),
        settings.path,
    )
    return True
