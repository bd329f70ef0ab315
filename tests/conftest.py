from __future__ import annotations

from pathlib import Path

import pytest

from dragon.config import ConfigRepository
from dragon.errors import DragonError, InstanceNotFound
from dragon.orchestrator import Reconciler, Toolchain
from dragon.provisioner import VmProvisioner


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


class _Recorder:
    def __init__(self, calls: list[tuple[str, ...]]) -> None:
        self.calls = calls
        self.fail_on: dict[str, DragonError] = {}

    def _record(self, *call: str) -> None:
        self.calls.append(call)
        failure = self.fail_on.get(call[0])
        if failure is not None:
            raise failure


class FakeImageTool(_Recorder):
    def __init__(self, calls: list[tuple[str, ...]]) -> None:
        super().__init__(calls)
        self.archives: list[Path] = []

    def login(self, registry: str, username: str, password: str) -> None:
        self._record("login", registry, username)

    def pull(self, reference: str) -> None:
        self._record("pull", reference)

    def create(self, reference: str) -> str:
        self._record("create", reference)
        return "c0ffee"

    def export(self, container_id: str, archive: Path) -> Path:
        self.archives.append(archive)
        archive.write_bytes(b"rootfs")
        self._record("export", container_id)
        return archive

    def remove(self, container_id: str) -> None:
        self._record("remove", container_id)


class FakeVmRuntime(_Recorder):
    def __init__(self, calls: list[tuple[str, ...]]) -> None:
        super().__init__(calls)
        self.distributions: list[str] = []

    def list(self) -> list[str]:
        self._record("list")
        return [*self.distributions]

    def import_instance(self, identity: str, install_dir: Path, archive: Path) -> None:
        self._record("import", identity, str(install_dir))
        assert archive.exists()
        self.distributions.append(identity)

    def unregister(self, identity: str) -> None:
        self._record("unregister", identity)
        self.distributions.remove(identity)

    def run(self, identity: str) -> int:
        self._record("run", identity)
        if identity not in self.distributions:
            raise InstanceNotFound(f"WSL distribution `{identity}` is not registered.")
        return 0


class FakeRegistry(_Recorder):
    def __init__(self, calls: list[tuple[str, ...]]) -> None:
        super().__init__(calls)
        self.output = '"1.26"\r\n'

    def login(self, username: str, password: str, tenant: str) -> None:
        self._record("az-login", username, tenant)

    def query_latest_tag(self, registry_name: str, repository: str) -> str:
        self._record("az-query", registry_name, repository)
        return self.output


@pytest.fixture
def calls() -> list[tuple[str, ...]]:
    return []


@pytest.fixture
def toolchain(calls: list[tuple[str, ...]]) -> Toolchain:
    return Toolchain(
        images=FakeImageTool(calls),
        runtime=FakeVmRuntime(calls),
        registry=FakeRegistry(calls),
    )


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.json"
    path.write_text(
        "\n".join(
            [
                "// This file was initially generated by Windows Terminal",
                "{",
                '    "defaultProfile": "{61c54bbd-c2c6-5271-96e7-009a87ff44bf}",',
                '    "profiles": {',
                '        "defaults": {},',
                '        "list": [',
                "            {",
                '                "guid": "{61c54bbd-c2c6-5271-96e7-009a87ff44bf}",',
                '                "name": "Windows PowerShell",',
                '                "commandline": "powershell.exe", /* stock */',
                '                "hidden": false',
                "            },",
                "        ]",
                "    }",
                "}",
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def repository(tmp_path: Path) -> ConfigRepository:
    return ConfigRepository(tmp_path / "config.toml")


@pytest.fixture
def reconciler(
    repository: ConfigRepository,
    toolchain: Toolchain,
    settings_file: Path,
    tmp_path: Path,
) -> Reconciler:
    temp_root = tmp_path / "exports"
    temp_root.mkdir()
    return Reconciler(
        repository,
        toolchain,
        terminal_settings=settings_file,
        provisioner=VmProvisioner(toolchain.images, toolchain.runtime, temp_root=temp_root),
    )
