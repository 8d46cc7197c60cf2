"""
Runtime fact resolution.

Turns the deploy target plus the results of the artifact uploads into the
concrete values a stack needs. No AWS calls and no decisions are made here.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .environment import DeployTarget
from .errors import ConfigurationError
from .manifest import WorkloadManifest


@dataclass(frozen=True)
class StackRuntimeConfiguration:
    """Upload results and deploy-time settings fed into stack building."""
    image_digests: Dict[str, str] = field(default_factory=dict)
    env_file_arns: Dict[str, str] = field(default_factory=dict)
    addons_url: Optional[str] = None
    custom_resource_urls: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerImage:
    repo_url: str
    digest: Optional[str] = None
    tag: Optional[str] = None

    @property
    def uri(self) -> str:
        if self.digest:
            return f"{self.repo_url}@{self.digest}"
        return f"{self.repo_url}:{self.tag or 'latest'}"


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved facts for one deploy attempt. Mappings are read-only views."""
    artifact_bucket: str
    artifact_key_arn: str
    account_id: str
    region: str
    service_discovery_endpoint: str
    images: Mapping[str, ContainerImage]
    env_file_arns: Mapping[str, str]
    custom_resource_urls: Mapping[str, str]
    addons_template_url: Optional[str] = None
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def service_discovery_endpoint(env_name: str, app_name: str) -> str:
    return f"{env_name}.{app_name}.local"


def resolve_image(target: DeployTarget, mft: WorkloadManifest, digests: Mapping[str, str],
                  image_tag: Optional[str] = None) -> ContainerImage:
    """Resolve the main container's image reference."""
    if mft.image.location:
        return ContainerImage(repo_url=mft.image.location)

    repo_url = target.resources.repositories.get(mft.name)
    if not repo_url:
        raise ConfigurationError(f'no ECR repository registered for workload "{mft.name}"')
    return ContainerImage(repo_url=repo_url, digest=digests.get(mft.name), tag=image_tag)


def resolve_runtime_config(target: DeployTarget, mft: WorkloadManifest, in_: StackRuntimeConfiguration,
                           image_tag: Optional[str] = None) -> RuntimeConfig:
    """
    Resolve the runtime facts for one deploy attempt.

    Args:
        target: App, environment and regional resources
        mft: Workload manifest
        in_: Upload results and deploy-time tags
        image_tag: Optional custom image tag

    Returns:
        RuntimeConfig snapshot
    """
    image = resolve_image(target, mft, in_.image_digests, image_tag)
    return RuntimeConfig(
        artifact_bucket=target.resources.s3_bucket,
        artifact_key_arn=target.resources.kms_key_arn,
        account_id=target.env.account_id,
        region=target.env.region,
        service_discovery_endpoint=service_discovery_endpoint(target.env.name, target.app.name),
        images=MappingProxyType({mft.name: image}),
        env_file_arns=MappingProxyType(dict(in_.env_file_arns)),
        custom_resource_urls=MappingProxyType(dict(in_.custom_resource_urls)),
        addons_template_url=in_.addons_url,
        tags=MappingProxyType(dict(in_.tags)),
    )
