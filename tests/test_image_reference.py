from __future__ import annotations

import pytest

from dragon.errors import ExitCode, MalformedReference
from dragon.image.reference import ImageReference, compute_identity, parse_image_reference


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("nginx", ImageReference(repository="nginx")),
        ("nginx:1.25", ImageReference(repository="nginx", tag="1.25")),
        ("contoso/app", ImageReference(repository="app", registry="contoso")),
        (
            "contoso.azurecr.io/tools/dev:2024.1",
            ImageReference(repository="dev", registry="contoso.azurecr.io/tools", tag="2024.1"),
        ),
        (
            "localhost:5000/app:edge",
            ImageReference(repository="app", registry="localhost:5000", tag="edge"),
        ),
    ],
)
def test_parse_splits_registry_repository_and_tag(raw: str, expected: ImageReference) -> None:
    assert parse_image_reference(raw) == expected


def test_bare_repository_has_no_registry_and_no_default_tag() -> None:
    reference = parse_image_reference("ubuntu")

    assert reference.registry is None
    assert reference.tag is None
    assert reference.effective_tag == "latest"


def test_normalized_adds_latest_only_when_missing() -> None:
    assert str(parse_image_reference("ubuntu").normalized()) == "ubuntu:latest"
    assert str(parse_image_reference("ubuntu:22.04").normalized()) == "ubuntu:22.04"


def test_with_tag_keeps_registry_and_repository() -> None:
    reference = parse_image_reference("contoso.azurecr.io/dev:1.0").with_tag("1.1")

    assert str(reference) == "contoso.azurecr.io/dev:1.1"


@pytest.mark.parametrize(
    "raw",
    ["", "registry/", "/app", "app:", ":tag", "reg//app", "my app:1", "reg/a:b:c"],
)
def test_malformed_references_are_rejected(raw: str) -> None:
    with pytest.raises(MalformedReference) as info:
        parse_image_reference(raw)

    assert info.value.code == ExitCode.VALIDATION_ERROR
    assert "[registry/]repository[:tag]" in info.value.hint


def test_identity_joins_name_and_tag() -> None:
    assert compute_identity("web", "1.25") == "web-1.25"


def test_nested_registry_paths_expose_host_and_repository_path() -> None:
    reference = parse_image_reference("contoso.azurecr.io/tools/dev:1.0")

    assert reference.registry_host == "contoso.azurecr.io"
    assert reference.repository_path == "tools/dev"
    assert parse_image_reference("nginx").registry_host is None
    assert parse_image_reference("contoso.azurecr.io/dev").repository_path == "dev"
