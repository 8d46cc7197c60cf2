"""
Deployment behaviour shared by every workload kind.

`WorkloadDeployer` does the work: uploads, validation, stack assembly and
execution. Variant deployers wrap one and supply a `VariantStrategy` with the
kind-specific pieces (ALB rules, stack class, recommender).
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from ..aws import ACM, ELBV2, S3, CloudFormation, DockerBuildArgs, DockerECRPusher, ECSServiceUpdater, Partitions
from ..aws.elbv2 import ImportedLoadBalancer
from ..aws.s3 import object_arn, object_url
from ..environment import DeployTarget, Environment
from ..errors import ConfigurationError, InvalidManifestError, ManifestKindMismatchError
from ..manifest import WorkloadKind, WorkloadManifest
from ..runtime import StackRuntimeConfiguration, resolve_runtime_config
from ..stack import RenderedStack, StackConfiguration, WorkloadStackConfig, parse_addons, wrap_with_template_overrider
from ..stack.override import load_patches_file
from ..upload import (
    PackageTemplateReader,
    UploadArtifactsOutput,
    read_custom_resources,
    upload_artifacts,
    upload_custom_resources,
)
from ..upload.pipeline import CUSTOM_RESOURCES_PHASE, IMAGES_PHASE, S3_PHASE
from ..validation import ALBRuleSet, ALBRuntimeValidator, ValidationResult
from .executor import ActionRecommender, DeployExecutor, DeployOptions

logger = logging.getLogger(__name__)

StackBuilder = Callable[[WorkloadStackConfig, Optional[ImportedLoadBalancer]], StackConfiguration]
Recommend = Callable[[WorkloadManifest, Environment, ValidationResult], ActionRecommender]


@dataclass(frozen=True)
class WorkloadDeployerInput:
    """
    Attributes:
        target: App, environment and regional resources
        manifest: Parsed workload manifest
        raw_manifest: Manifest text, stored in the template metadata
        workspace: Directory that image build contexts and env files are relative to
        workload_dir: Directory holding addons/ and overrides/; defaults to workspace
        image_tag: Extra tag pushed with the image and used when no digest is known
    """
    target: DeployTarget
    manifest: WorkloadManifest
    raw_manifest: str
    workspace: Path
    workload_dir: Optional[Path] = None
    image_tag: Optional[str] = None


@dataclass(frozen=True)
class DeployClients:
    """Collaborators of one deploy session."""
    lb_getter: object
    cert_validator: object
    regions: object
    uploader: object
    image_pusher: object
    stack_engine: object
    service_updater: object
    template_reader: object

    @classmethod
    def from_sessions(cls, default_session, env_session) -> "DeployClients":
        """
        Production clients.

        Artifacts go through the default session; anything inside the
        environment goes through the env session.
        """
        uploader = S3(default_session)
        return cls(
            lb_getter=ELBV2(env_session),
            cert_validator=ACM(env_session),
            regions=Partitions(default_session),
            uploader=uploader,
            image_pusher=DockerECRPusher(default_session),
            stack_engine=CloudFormation(env_session, uploader),
            service_updater=ECSServiceUpdater(env_session),
            template_reader=PackageTemplateReader(),
        )


@dataclass(frozen=True)
class DeployWorkloadInput:
    runtime: StackRuntimeConfiguration
    options: DeployOptions = DeployOptions()


@dataclass(frozen=True)
class GenerateCloudFormationTemplateInput:
    runtime: StackRuntimeConfiguration


@dataclass(frozen=True)
class GenerateCloudFormationTemplateOutput:
    template: str
    parameters: str


@dataclass(frozen=True)
class VariantStrategy:
    kind: WorkloadKind
    build_stack: StackBuilder
    recommend: Recommend
    alb_rules: Optional[ALBRuleSet] = None
    service_family: str = "ecs"
    force_updatable: bool = True


def stack_runtime_configuration(out: UploadArtifactsOutput, workload: str,
                                tags: Optional[Dict[str, str]] = None) -> StackRuntimeConfiguration:
    """Runtime inputs for stack building from the results of an upload."""
    return StackRuntimeConfiguration(
        image_digests=dict(out.image_digests),
        env_file_arns={workload: out.env_file_arn} if out.env_file_arn else {},
        addons_url=out.addons_url,
        custom_resource_urls=dict(out.custom_resource_urls),
        tags=dict(tags or {}),
    )


def env_file_key(path: Path, content: bytes) -> str:
    digest = hashlib.sha256(content).hexdigest()
    return f"manual/env-files/{path.name}/{digest}.env"


class WorkloadDeployer:
    """Shared implementation behind every variant deployer."""

    def __init__(self, in_: WorkloadDeployerInput, strategy: VariantStrategy, clients: DeployClients,
                 stack_factory: Optional[StackBuilder] = None):
        self.in_ = in_
        self.strategy = strategy
        self.clients = clients
        self.stack_factory = stack_factory

        self.app = in_.target.app
        self.env = in_.target.env
        self.resources = in_.target.resources
        self.manifest = in_.manifest
        self.name = in_.manifest.name

        self.validator = None
        if strategy.alb_rules is not None:
            self.validator = ALBRuntimeValidator(strategy.alb_rules, clients.lb_getter, clients.cert_validator)

        workload_dir = in_.workload_dir or in_.workspace
        self.addons = parse_addons(workload_dir)
        self.patches = load_patches_file(workload_dir)

    def is_service_available_in_region(self, region: str) -> bool:
        return self.clients.regions.is_available_in_region(self.strategy.service_family, region)

    # Uploads

    def upload_artifacts(self) -> UploadArtifactsOutput:
        return upload_artifacts([
            (IMAGES_PHASE, self._build_and_push_images),
            (S3_PHASE, self._upload_artifacts_to_s3),
            (CUSTOM_RESOURCES_PHASE, self._upload_custom_resources),
        ])

    def _build_and_push_images(self, out: UploadArtifactsOutput) -> None:
        image = self.manifest.image
        if not image.build:
            return
        repo_uri = self.resources.repositories.get(self.name)
        if not repo_uri:
            raise ConfigurationError(f'no ECR repository registered for workload "{self.name}"')

        tags = ("latest",)
        if self.in_.image_tag:
            tags += (self.in_.image_tag,)
        args = DockerBuildArgs(
            context=str(self.in_.workspace / image.build),
            repo_uri=repo_uri,
            tags=tags,
            dockerfile=str(self.in_.workspace / image.dockerfile) if image.dockerfile else None,
        )
        logger.info(f"Building image for {self.name} from {args.context}")
        out.image_digests[self.name] = self.clients.image_pusher.build_and_push(args)

    def _upload_artifacts_to_s3(self, out: UploadArtifactsOutput) -> None:
        bucket = self.resources.s3_bucket
        if self.manifest.env_file:
            path = self.in_.workspace / self.manifest.env_file
            content = path.read_bytes()
            key = env_file_key(path, content)
            self.clients.uploader.upload(bucket, key, content)
            partition = self.clients.regions.partition_for_region(self.env.region)
            out.env_file_arn = object_arn(bucket, key, partition)
            logger.info(f"Uploaded env file {self.manifest.env_file}")

        if self.addons is not None:
            out.addons_url = self.clients.uploader.upload(
                bucket, self.addons.artifact_key(self.name), self.addons.render().encode(),
            )

    def _upload_custom_resources(self, out: UploadArtifactsOutput) -> None:
        bundle = read_custom_resources(self.clients.template_reader, self.strategy.kind)
        out.custom_resource_urls.update(
            upload_custom_resources(bundle, self.clients.uploader, self.resources.s3_bucket)
        )

    def planned_artifacts(self) -> UploadArtifactsOutput:
        """Where upload_artifacts would put each artifact, computed without uploading."""
        bucket = self.resources.s3_bucket
        out = UploadArtifactsOutput()
        if self.manifest.env_file:
            path = self.in_.workspace / self.manifest.env_file
            try:
                content = path.read_bytes()
            except OSError as e:
                raise InvalidManifestError(str(path), f"read env file: {e}") from e
            partition = self.clients.regions.partition_for_region(self.env.region)
            out.env_file_arn = object_arn(bucket, env_file_key(path, content), partition)
        if self.addons is not None:
            out.addons_url = object_url(bucket, self.addons.artifact_key(self.name), self.env.region)
        for cr in read_custom_resources(self.clients.template_reader, self.strategy.kind):
            out.custom_resource_urls[cr.name] = object_url(bucket, cr.artifact_key(), self.env.region)
        return out

    # Validation and stack assembly

    def validate(self) -> ValidationResult:
        """
        Check the imported ALB and render the stack against the planned artifact
        locations.

        Raises:
            ValidationError: If a routing rule, the manifest or an override patch
                cannot produce a deployable stack
            ConfigurationError: If a custom resource bundle is missing
        """
        validation = self._check_alb()
        self._stack_config(stack_runtime_configuration(self.planned_artifacts(), self.name), validation)
        logger.debug(f"Rendered {self.name} stack during validation")
        return validation

    def _check_alb(self) -> ValidationResult:
        if self.validator is None:
            return ValidationResult()
        return self.validator.validate(self.manifest.http, self.name, self.app, self.env)  # type: ignore[attr-defined]

    def _stack_config(self, runtime: StackRuntimeConfiguration, validation: ValidationResult) -> RenderedStack:
        resolved = resolve_runtime_config(self.in_.target, self.manifest, runtime, self.in_.image_tag)
        config = WorkloadStackConfig(
            app=self.app,
            env=self.env,
            manifest=self.manifest,
            raw_manifest=self.in_.raw_manifest,
            runtime=resolved,
            addons=self.addons,
        )
        build = self.stack_factory or self.strategy.build_stack
        conf = wrap_with_template_overrider(build(config, validation.imported_alb), self.patches)
        return RenderedStack.from_config(conf)

    def generate_cloudformation_template(self, in_: GenerateCloudFormationTemplateInput) -> GenerateCloudFormationTemplateOutput:
        """Validate and render the stack without uploading or deploying anything."""
        validation = self._check_alb()
        conf = self._stack_config(in_.runtime, validation)
        return GenerateCloudFormationTemplateOutput(template=conf.template(), parameters=conf.serialized_parameters())

    def deploy_workload(self, in_: DeployWorkloadInput) -> ActionRecommender:
        """
        Validate, build and deploy the workload stack.

        The ALB checks run on every call with a freshly fetched imported ALB, so a
        retried deploy never reuses a stale snapshot. The stack is fully rendered
        before the engine sees it.
        """
        started_at = datetime.now(timezone.utc)
        logger.info(f"Deploying {self.strategy.kind.value} {self.name} to {self.app.name}/{self.env.name}")
        validation = self._check_alb()
        conf = self._stack_config(in_.runtime, validation)

        updater = self.clients.service_updater if self.strategy.force_updatable else None
        executor = DeployExecutor(self.clients.stack_engine, self.resources.s3_bucket,
                                  self.env.execution_role_arn, updater)
        executor.execute(conf, self.app.name, self.env.name, self.name, in_.options, started_at)
        return self.strategy.recommend(self.manifest, self.env, validation)


class Deployer(ABC):
    """Operations every workload kind supports."""

    @abstractmethod
    def is_service_available_in_region(self, region: str) -> bool:
        pass

    @abstractmethod
    def upload_artifacts(self) -> UploadArtifactsOutput:
        pass

    @abstractmethod
    def validate(self) -> ValidationResult:
        pass

    @abstractmethod
    def generate_cloudformation_template(self, in_: GenerateCloudFormationTemplateInput) -> GenerateCloudFormationTemplateOutput:
        pass

    @abstractmethod
    def deploy_workload(self, in_: DeployWorkloadInput) -> ActionRecommender:
        pass


class VariantDeployer(Deployer):
    """
    A deployer for one workload kind.

    Subclasses set `kind` and return their strategy from `strategy()`; the
    work is delegated to a WorkloadDeployer.
    """
    kind: WorkloadKind

    def __init__(self, in_: WorkloadDeployerInput, clients: DeployClients,
                 stack_factory: Optional[StackBuilder] = None):
        actual = getattr(in_.manifest, "type", type(in_.manifest).__name__)
        if actual != self.kind.value:
            raise ManifestKindMismatchError(self.kind.value, actual)
        self._deployer = WorkloadDeployer(in_, self.strategy(), clients, stack_factory)

    @classmethod
    @abstractmethod
    def strategy(cls) -> VariantStrategy:
        pass

    def is_service_available_in_region(self, region: str) -> bool:
        return self._deployer.is_service_available_in_region(region)

    def upload_artifacts(self) -> UploadArtifactsOutput:
        return self._deployer.upload_artifacts()

    def planned_artifacts(self) -> UploadArtifactsOutput:
        return self._deployer.planned_artifacts()

    def validate(self) -> ValidationResult:
        return self._deployer.validate()

    def generate_cloudformation_template(self, in_: GenerateCloudFormationTemplateInput) -> GenerateCloudFormationTemplateOutput:
        return self._deployer.generate_cloudformation_template(in_)

    def deploy_workload(self, in_: DeployWorkloadInput) -> ActionRecommender:
        return self._deployer.deploy_workload(in_)
