from __future__ import annotations

from pathlib import Path

import pytest

from dragon.errors import ExternalCommandFailed, ImportFailed
from dragon.orchestrator import Toolchain
from dragon.provisioner import VmProvisioner


@pytest.fixture
def provisioner(toolchain: Toolchain, tmp_path: Path) -> VmProvisioner:
    temp_root = tmp_path / "exports"
    temp_root.mkdir()
    return VmProvisioner(toolchain.images, toolchain.runtime, temp_root=temp_root)


def test_provision_exports_then_imports_fresh_identity(
    provisioner: VmProvisioner,
    calls: list[tuple[str, ...]],
    tmp_path: Path,
) -> None:
    result = provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms" / "web")

    assert [call[0] for call in calls] == ["create", "export", "remove", "list", "import"]
    assert result.identity == "web-1.25"
    assert result.replaced is False
    assert result.install_dir == tmp_path / "vms" / "web" / "web-1.25"
    assert result.install_dir.is_dir()


def test_existing_identity_is_unregistered_before_import(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    calls: list[tuple[str, ...]],
    tmp_path: Path,
) -> None:
    toolchain.runtime.distributions.append("web-1.25")

    result = provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    names = [call[0] for call in calls]
    assert names.index("unregister") < names.index("import")
    assert result.replaced is True
    assert toolchain.runtime.distributions == ["web-1.25"]


def test_export_archive_is_removed_after_success(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    tmp_path: Path,
) -> None:
    provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    archive = toolchain.images.archives[0]
    assert not archive.exists()
    assert not archive.parent.exists()
    assert list((tmp_path / "exports").iterdir()) == []


def test_export_archive_is_removed_when_import_fails(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    tmp_path: Path,
) -> None:
    toolchain.runtime.fail_on["import"] = ImportFailed("wsl --import failed")

    with pytest.raises(ImportFailed):
        provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    assert not toolchain.images.archives[0].exists()
    assert list((tmp_path / "exports").iterdir()) == []


def test_container_is_removed_when_export_fails(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    calls: list[tuple[str, ...]],
    tmp_path: Path,
) -> None:
    toolchain.images.fail_on["export"] = ExternalCommandFailed("disk full")

    with pytest.raises(ExternalCommandFailed, match="disk full"):
        provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    assert [call[0] for call in calls] == ["create", "export", "remove"]
    assert not (tmp_path / "vms").exists()


def test_container_cleanup_failure_does_not_mask_success(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    tmp_path: Path,
) -> None:
    toolchain.images.fail_on["remove"] = ExternalCommandFailed("container in use")

    result = provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    assert result.identity in toolchain.runtime.distributions


def test_failed_import_after_unregister_leaves_identity_absent(
    provisioner: VmProvisioner,
    toolchain: Toolchain,
    tmp_path: Path,
) -> None:
    toolchain.runtime.distributions.append("web-1.25")
    toolchain.runtime.fail_on["import"] = ImportFailed("wsl --import failed")

    with pytest.raises(ImportFailed):
        provisioner.provision("web-1.25", "nginx:1.25", tmp_path / "vms")

    assert "web-1.25" not in toolchain.runtime.distributions
