from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from ..preconditions import (
    ConfigurationError,
    Lookup,
    ValidationResult,
    as_lookup,
    validate_required,
)

REQUIRED_VARIABLES: tuple[str, ...] = (
    "STORE_NAME",
    "STORE_TAGS",
    "AZ_SP_ID",
    "AZ_SP_SECRET",
    "AZ_TENANT_ID",
    "GITOPS_REPO",
    "GITOPS_PAT",
    "GITOPS_BRANCH",
    "AZ_ARC_RESOURCEGROUP",
    "AZ_ARC_RESOURCEGROUP_LOCATION",
)

OPTIONAL_VARIABLES: dict[str, str] = {
    "GITOPS_BOOTSTRAP_BRANCH": "main",
    "GITOPS_HOST": "https://github.com",
    "KUBECTL_ARCH": "amd64",
    "FLUX_INTERVAL": "1m",
    "KUBECONFIG_PATH": "~/.kube/config",
}

_TAG_SPLIT = re.compile(r"[,\s]+")


class MissingConfigurationError(ConfigurationError):
    """Raised when one or more required variables are missing or empty."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("Missing required configuration: " + ", ".join(result.missing))


@dataclass(slots=True)
class StoreConfig:
    """Validated settings for provisioning a single store cluster."""

    store_name: str
    store_tags: list[str]
    sp_id: str
    sp_secret: str
    tenant_id: str
    gitops_repo: str
    gitops_pat: str
    gitops_branch: str
    resource_group: str
    resource_group_location: str
    gitops_bootstrap_branch: str = "main"
    gitops_host: str = "https://github.com"
    kubectl_arch: str = "amd64"
    flux_interval: str = "1m"
    kubeconfig_path: Path = Path("~/.kube/config").expanduser()

    @property
    def gitops_url(self) -> str:
        return f"{self.gitops_host.rstrip('/')}/{self.gitops_repo.strip('/')}"

    @property
    def bootstrap_path(self) -> str:
        return f"./deploy/bootstrap/{self.store_name}"

    @property
    def apps_path(self) -> str:
        return f"./deploy/apps/{self.store_name}"

    def secrets(self) -> tuple[str, ...]:
        return (self.sp_secret, self.gitops_pat)

    def masked(self) -> dict[str, str]:
        """Return a printable view of the configuration with secrets hidden."""

        return {
            "STORE_NAME": self.store_name,
            "STORE_TAGS": " ".join(self.store_tags),
            "AZ_SP_ID": self.sp_id,
            "AZ_SP_SECRET": "***",
            "AZ_TENANT_ID": self.tenant_id,
            "GITOPS_REPO": self.gitops_repo,
            "GITOPS_PAT": "***",
            "GITOPS_BRANCH": self.gitops_branch,
            "AZ_ARC_RESOURCEGROUP": self.resource_group,
            "AZ_ARC_RESOURCEGROUP_LOCATION": self.resource_group_location,
            "GITOPS_BOOTSTRAP_BRANCH": self.gitops_bootstrap_branch,
            "GITOPS_HOST": self.gitops_host,
            "KUBECTL_ARCH": self.kubectl_arch,
            "FLUX_INTERVAL": self.flux_interval,
            "KUBECONFIG_PATH": str(self.kubeconfig_path),
        }


def parse_tags(raw: str) -> list[str]:
    """Split ``STORE_TAGS`` into ``key=value`` tokens for ``az --tags``."""

    return [token for token in _TAG_SPLIT.split(raw.strip()) if token]


def load_store_config(lookup: Lookup) -> StoreConfig:
    result = validate_required(REQUIRED_VARIABLES, lookup)
    if not result.ok:
        raise MissingConfigurationError(result)

    resolve = as_lookup(lookup)

    def optional(name: str) -> str:
        value = resolve(name)
        return value if value else OPTIONAL_VARIABLES[name]

    tags = parse_tags(str(resolve("STORE_TAGS")))
    if not tags:
        raise ConfigurationError("STORE_TAGS must contain at least one tag.")

    return StoreConfig(
        store_name=str(resolve("STORE_NAME")),
        store_tags=tags,
        sp_id=str(resolve("AZ_SP_ID")),
        sp_secret=str(resolve("AZ_SP_SECRET")),
        tenant_id=str(resolve("AZ_TENANT_ID")),
        gitops_repo=str(resolve("GITOPS_REPO")),
        gitops_pat=str(resolve("GITOPS_PAT")),
        gitops_branch=str(resolve("GITOPS_BRANCH")),
        resource_group=str(resolve("AZ_ARC_RESOURCEGROUP")),
        resource_group_location=str(resolve("AZ_ARC_RESOURCEGROUP_LOCATION")),
        gitops_bootstrap_branch=optional("GITOPS_BOOTSTRAP_BRANCH"),
        gitops_host=optional("GITOPS_HOST"),
        kubectl_arch=optional("KUBECTL_ARCH"),
        flux_interval=optional("FLUX_INTERVAL"),
        kubeconfig_path=Path(optional("KUBECONFIG_PATH")).expanduser(),
    )


__all__ = [
    "MissingConfigurationError",
    "OPTIONAL_VARIABLES",
    "REQUIRED_VARIABLES",
    "StoreConfig",
    "load_store_config",
    "parse_tags",
]
