"""
Application, environment and regional resource descriptors.

These are read-only inputs to a deploy. They are usually loaded from the
environment description file handed to the CLI.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import ConfigurationError


@dataclass(frozen=True)
class App:
    name: str
    domain: Optional[str] = None


@dataclass(frozen=True)
class EnvironmentConfig:
    """Network and security posture of the target environment."""
    private_certificates: Tuple[str, ...] = ()
    public_certificates: Tuple[str, ...] = ()

    @property
    def has_imported_private_certs(self) -> bool:
        return len(self.private_certificates) != 0

    @property
    def has_imported_public_certs(self) -> bool:
        return len(self.public_certificates) != 0


@dataclass(frozen=True)
class Environment:
    name: str
    region: str
    account_id: str
    execution_role_arn: str
    manager_role_arn: Optional[str] = None
    config: EnvironmentConfig = field(default_factory=EnvironmentConfig)


@dataclass(frozen=True)
class StackResources:
    """Regional resources the application stack set provides."""
    s3_bucket: str
    kms_key_arn: str
    repositories: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeployTarget:
    app: App
    env: Environment
    resources: StackResources


def _tuple(values: Any) -> Tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


def parse_deploy_target(data: Dict[str, Any]) -> DeployTarget:
    """
    Build the deploy target from an environment description mapping.

    Expected layout:
        app: {name, domain}
        environment: {name, region, account_id, execution_role_arn, manager_role_arn,
                      http: {private: {certificates}, public: {certificates}}}
        resources: {s3_bucket, kms_key_arn, repositories: {workload: repo_uri}}

    Raises:
        ConfigurationError: If a required key is missing
    """
    try:
        app_data = data["app"]
        env_data = data["environment"]
        res_data = data["resources"]

        http = env_data.get("http") or {}
        env_config = EnvironmentConfig(
            private_certificates=_tuple((http.get("private") or {}).get("certificates")),
            public_certificates=_tuple((http.get("public") or {}).get("certificates")),
        )
        return DeployTarget(
            app=App(
                name=app_data["name"],
                domain=app_data.get("domain"),
            ),
            env=Environment(
                name=env_data["name"],
                region=env_data["region"],
                account_id=str(env_data["account_id"]),
                execution_role_arn=env_data["execution_role_arn"],
                manager_role_arn=env_data.get("manager_role_arn"),
                config=env_config,
            ),
            resources=StackResources(
                s3_bucket=res_data["s3_bucket"],
                kms_key_arn=res_data["kms_key_arn"],
                repositories=dict(res_data.get("repositories") or {}),
            ),
        )
    except (KeyError, TypeError) as e:
        raise ConfigurationError(f"environment description is missing {e}") from e


def load_deploy_target(path: Path) -> DeployTarget:
    """Load the deploy target from a YAML environment description file."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"environment description {path} must be a mapping")
    return parse_deploy_target(data)
