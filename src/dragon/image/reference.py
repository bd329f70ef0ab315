"""Parsing of ``[registry/]repository[:tag]`` image references."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from dragon.errors import MalformedReference

DEFAULT_TAG = "latest"

_FORBIDDEN = re.compile(r"\s")


@dataclass(frozen=True)
class ImageReference:
    repository: str
    registry: str | None = None
    tag: str | None = None

    @property
    def effective_tag(self) -> str:
        return self.tag or DEFAULT_TAG

    @property
    def registry_host(self) -> str | None:
        """First path segment of the registry, the key credentials are stored under."""
        if self.registry is None:
            return None
        return self.registry.split("/", 1)[0]

    @property
    def repository_path(self) -> str:
        """Repository as the registry names it, including nested namespaces."""
        if self.registry is None or "/" not in self.registry:
            return self.repository
        return f"{self.registry.split('/', 1)[1]}/{self.repository}"

    def with_tag(self, tag: str) -> ImageReference:
        return replace(self, tag=tag)

    def normalized(self) -> ImageReference:
        """Return a copy carrying an explicit tag."""
        return self.with_tag(self.effective_tag)

    def __str__(self) -> str:
        text = self.repository
        if self.registry is not None:
            text = f"{self.registry}/{text}"
        if self.tag is not None:
            text = f"{text}:{self.tag}"
        return text


def _malformed(reference: str, detail: str) -> MalformedReference:
    return MalformedReference(
        f"Malformed image reference `{reference}`: {detail}",
        hint="Use the form [registry/]repository[:tag].",
    )


def parse_image_reference(reference: str) -> ImageReference:
    """Split an image reference into registry, repository and tag.

    The registry is everything before the last ``/``; the tag is whatever
    follows the last ``:`` of the final segment. Missing tags stay ``None``,
    callers decide on the default.
    """
    if not reference or _FORBIDDEN.search(reference):
        raise _malformed(reference, "empty or contains whitespace")

    registry: str | None = None
    remainder = reference
    if "/" in reference:
        registry, _, remainder = reference.rpartition("/")
        if not registry:
            raise _malformed(reference, "registry part is empty")
        if any(not part for part in registry.split("/")):
            raise _malformed(reference, "registry part has an empty path segment")

    tag: str | None = None
    repository = remainder
    if ":" in remainder:
        repository, _, tag = remainder.rpartition(":")
        if not tag:
            raise _malformed(reference, "tag is empty")
        if ":" in repository:
            raise _malformed(reference, "repository contains more than one tag separator")

    if not repository:
        raise _malformed(reference, "repository could not be isolated")
    return ImageReference(repository=repository, registry=registry, tag=tag)


def compute_identity(name: str, tag: str) -> str:
    """VM identity for an environment at a tag, e.g. ``web-1.25``."""
    return f"{name}-{tag}"
