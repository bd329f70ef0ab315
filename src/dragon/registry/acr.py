"""Latest-tag resolution for Azure Container Registry repositories.

Resolution shells out to the Azure CLI: a service principal login followed by
a manifest listing ordered newest first. Only ``*.azurecr.io`` hosts are
supported; callers are expected to check :func:`is_supported_registry` before
reaching for credentials.
"""

from __future__ import annotations

import logging as py_logging
import re
import subprocess
from typing import Protocol

from dragon.config import RegistryCredential
from dragon.errors import AuthenticationFailed, TagResolutionFailed, UnsupportedRegistry
from dragon.runtime.process import Runner, run_command

logger = py_logging.getLogger(__name__)

ACR_SUFFIX = ".azurecr.io"

_QUOTED_TAG = re.compile(r'^"(?P<tag>[^"\s]+)"$')


class RegistryClient(Protocol):
    def login(self, username: str, password: str, tenant: str) -> None: ...

    def query_latest_tag(self, registry_name: str, repository: str) -> str: ...


def is_supported_registry(host: str | None) -> bool:
    if not host:
        return False
    return host.lower().endswith(ACR_SUFFIX) and len(host) > len(ACR_SUFFIX)


def registry_name(host: str) -> str:
    return host[: -len(ACR_SUFFIX)]


def parse_tag_output(output: str) -> str:
    """Extract the tag from ``az`` JSON output such as ``"1.2.3"\\r\\n``."""
    text = output.strip()
    match = _QUOTED_TAG.match(text)
    if text in ("", "null"):
        raise TagResolutionFailed(
            "The registry returned no tagged manifests.",
            hint="Push a tagged image to the repository and retry.",
        )
    if not match:
        raise TagResolutionFailed(
            "Could not read the latest tag from the registry query output.",
            hint=f"Unexpected output: {text!r}",
        )
    return match.group("tag")


class AzureCli:
    def __init__(self, executable: str = "az", *, runner: Runner = subprocess.run) -> None:
        self.executable = executable
        self.runner = runner

    def login(self, username: str, password: str, tenant: str) -> None:
        run_command(
            [
                self.executable,
                "login",
                "--service-principal",
                "--username",
                username,
                "--password",
                password,
                "--tenant",
                tenant,
                "--output",
                "none",
            ],
            runner=self.runner,
            description="log in to Azure with the service principal",
            secrets=[password],
            error_type=AuthenticationFailed,
        )
        logger.info("Logged in to Azure tenant=%s as username=%s", tenant, username)

    def query_latest_tag(self, registry_name: str, repository: str) -> str:
        result = run_command(
            [
                self.executable,
                "acr",
                "repository",
                "show-manifests",
                "--name",
                registry_name,
                "--repository",
                repository,
                "--orderby",
                "time_desc",
                "--top",
                "1",
                "--query",
                "[0].tags[0]",
            ],
            runner=self.runner,
            description=f"list manifests of {registry_name}{ACR_SUFFIX}/{repository}",
            error_type=TagResolutionFailed,
        )
        return result.stdout


def resolve_latest_tag(
    host: str,
    repository: str,
    credential: RegistryCredential | None,
    *,
    client: RegistryClient,
) -> str:
    if not is_supported_registry(host):
        raise UnsupportedRegistry(
            f"Registry `{host}` does not support version resolution.",
            hint=f"Only Azure Container Registry hosts (*{ACR_SUFFIX}) can be queried.",
        )
    if credential is None or not credential.tenant:
        raise AuthenticationFailed(
            f"No service principal with a tenant is registered for `{host}`.",
            hint="Add username, password and tenant under [[registry_credentials]].",
        )

    client.login(credential.username, credential.password, credential.tenant)
    raw = client.query_latest_tag(registry_name(host), repository)
    tag = parse_tag_output(raw)
    logger.info("Resolved latest tag host=%s repository=%s tag=%s", host, repository, tag)
    return tag
