"""
Typed workload manifests.

A manifest is parsed once from YAML into one of the workload models below,
selected by its `type` field. Models are frozen; deployers only read them.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from .errors import InvalidManifestError


class WorkloadKind(str, Enum):
    """Workload kinds stackpilot knows how to deploy."""
    BACKEND_SERVICE = "Backend Service"
    LOAD_BALANCED_WEB_SERVICE = "Load Balanced Web Service"
    WORKER_SERVICE = "Worker Service"
    SCHEDULED_JOB = "Scheduled Job"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class RoutingRule(_Frozen):
    """One HTTP routing rule on a load balancer listener."""
    path: Optional[str] = None
    alias: Tuple[str, ...] = ()
    healthcheck: Optional[str] = None
    target_port: Optional[int] = None

    @field_validator("alias", mode="before")
    @classmethod
    def _alias_to_tuple(cls, value: Any) -> Any:
        # `alias: example.com` and `alias: [a.example.com, b.example.com]` are both accepted.
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    def is_empty(self) -> bool:
        return self.path is None and not self.alias and self.healthcheck is None and self.target_port is None


class HTTPConfig(RoutingRule):
    """The `http` block: the primary rule's fields plus extra rules and an imported ALB."""
    alb: Optional[str] = None
    additional_rules: Tuple[RoutingRule, ...] = ()

    @property
    def main(self) -> RoutingRule:
        return RoutingRule(
            path=self.path,
            alias=self.alias,
            healthcheck=self.healthcheck,
            target_port=self.target_port,
        )

    def is_empty(self) -> bool:
        return self.main.is_empty() and self.alb is None and not self.additional_rules

    def rules(self) -> Tuple[Tuple[str, RoutingRule], ...]:
        """All rules with the manifest path used to report errors against them."""
        named = [("http", self.main)]
        for idx, rule in enumerate(self.additional_rules):
            named.append((f"http.additional_rules[{idx}]", rule))
        return tuple(named)


class ImageConfig(_Frozen):
    build: Optional[str] = None
    dockerfile: Optional[str] = None
    location: Optional[str] = None
    port: Optional[int] = None

    @model_validator(mode="after")
    def _build_or_location(self) -> "ImageConfig":
        if (self.build is None) == (self.location is None):
            raise ValueError('must specify exactly one of "image.build" and "image.location"')
        return self


class Topic(_Frozen):
    name: str
    service: str


class SubscribeConfig(_Frozen):
    topics: Tuple[Topic, ...] = ()


class JobTriggerConfig(_Frozen):
    schedule: str


class WorkloadManifest(_Frozen):
    """Fields shared by every workload kind."""
    name: str
    image: ImageConfig
    cpu: int = 256
    memory: int = 512
    count: int = 1
    variables: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)
    env_file: Optional[str] = None

    @property
    def kind(self) -> WorkloadKind:
        return WorkloadKind(self.type)  # type: ignore[attr-defined]


class BackendServiceManifest(WorkloadManifest):
    type: Literal["Backend Service"] = "Backend Service"
    http: HTTPConfig = HTTPConfig()


class LoadBalancedWebServiceManifest(WorkloadManifest):
    type: Literal["Load Balanced Web Service"] = "Load Balanced Web Service"
    http: HTTPConfig = HTTPConfig()


class WorkerServiceManifest(WorkloadManifest):
    type: Literal["Worker Service"] = "Worker Service"
    subscribe: SubscribeConfig = SubscribeConfig()


class ScheduledJobManifest(WorkloadManifest):
    type: Literal["Scheduled Job"] = "Scheduled Job"
    on: JobTriggerConfig
    retries: int = 0
    timeout: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _yaml_on_key(cls, data: Any) -> Any:
        # YAML 1.1 reads a bare `on:` key as the boolean True.
        if isinstance(data, dict) and True in data and "on" not in data:
            data = dict(data)
            data["on"] = data.pop(True)
        return data


Manifest = Annotated[
    Union[
        BackendServiceManifest,
        LoadBalancedWebServiceManifest,
        WorkerServiceManifest,
        ScheduledJobManifest,
    ],
    Field(discriminator="type"),
]

_MANIFEST_ADAPTER: TypeAdapter = TypeAdapter(Manifest)


def load_manifest(text: str, source: str = "<string>") -> WorkloadManifest:
    """
    Parse a manifest document into its typed workload model.

    Args:
        text: YAML manifest content
        source: Name used in error messages (usually the file path)

    Returns:
        The manifest model matching the document's `type`

    Raises:
        InvalidManifestError: If the document is not a valid manifest
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidManifestError(source, str(e)) from e

    if not isinstance(data, dict):
        raise InvalidManifestError(source, "expected a mapping at the top level")

    try:
        return _MANIFEST_ADAPTER.validate_python(data)
    except pydantic.ValidationError as e:
        raise InvalidManifestError(source, str(e)) from e
