"""
Stack configuration interface and the template pieces shared by every workload.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from ..aws.s3 import parse_object_url
from ..environment import App, Environment
from ..errors import ConfigurationError
from ..manifest import WorkloadManifest
from ..runtime import RuntimeConfig
from ..tags import base_tags
from .addons import Addons

TEMPLATE_VERSION = "v1.0.0"
LOG_RETENTION_DAYS = 30


class StackConfiguration(ABC):
    """Desired state handed to the stack execution engine."""

    @abstractmethod
    def stack_name(self) -> str:
        pass

    @abstractmethod
    def template(self) -> str:
        """Rendered CloudFormation template body."""
        pass

    @abstractmethod
    def parameters(self) -> List[Dict[str, str]]:
        """CloudFormation parameters as ParameterKey/ParameterValue dicts."""
        pass

    @abstractmethod
    def tags(self) -> Dict[str, str]:
        pass

    def serialized_parameters(self) -> str:
        """Parameters and tags in the template-configuration file format."""
        return json.dumps({
            "Parameters": {p["ParameterKey"]: p["ParameterValue"] for p in self.parameters()},
            "Tags": self.tags(),
        }, indent=2, sort_keys=True)


@dataclass(frozen=True)
class RenderedStack(StackConfiguration):
    """A stack configuration rendered once, when it is built from another."""
    name: str
    body: str
    parameter_list: Tuple[Dict[str, str], ...]
    tag_map: Mapping[str, str]

    @classmethod
    def from_config(cls, conf: StackConfiguration) -> "RenderedStack":
        return cls(
            name=conf.stack_name(),
            body=conf.template(),
            parameter_list=tuple(conf.parameters()),
            tag_map=MappingProxyType(dict(conf.tags())),
        )

    def stack_name(self) -> str:
        return self.name

    def template(self) -> str:
        return self.body

    def parameters(self) -> List[Dict[str, str]]:
        return [dict(p) for p in self.parameter_list]

    def tags(self) -> Dict[str, str]:
        return dict(self.tag_map)


def dump_template(template: Dict[str, Any]) -> str:
    return yaml.safe_dump(template, sort_keys=False, default_flow_style=False, width=1000)


def import_value(app: str, env: str, export: str) -> Dict[str, Any]:
    return {"Fn::ImportValue": f"{app}-{env}-{export}"}


def ref(logical_id: str) -> Dict[str, str]:
    return {"Ref": logical_id}


def get_att(logical_id: str, attribute: str) -> Dict[str, List[str]]:
    return {"Fn::GetAtt": [logical_id, attribute]}


@dataclass(frozen=True)
class WorkloadStackConfig:
    """Everything a workload stack is assembled from."""
    app: App
    env: Environment
    manifest: WorkloadManifest
    raw_manifest: str
    runtime: RuntimeConfig
    addons: Optional[Addons] = None


class WorkloadStack(StackConfiguration):
    """
    Template assembly shared by the ECS-based workload kinds.

    Subclasses add their kind-specific resources through `_resources` and
    may declare extra parameters and outputs.
    """

    def __init__(self, config: WorkloadStackConfig):
        self.config = config
        self.app = config.app
        self.env = config.env
        self.manifest = config.manifest
        self.runtime = config.runtime

    @property
    def name(self) -> str:
        return self.manifest.name

    def stack_name(self) -> str:
        return f"{self.app.name}-{self.env.name}-{self.name}"

    def tags(self) -> Dict[str, str]:
        return base_tags(self.app.name, self.env.name, self.name, dict(self.runtime.tags))

    # Parameters

    def _parameter_values(self) -> Dict[str, str]:
        image = self.runtime.images[self.name]
        return {
            "AppName": self.app.name,
            "EnvName": self.env.name,
            "WorkloadName": self.name,
            "ContainerImage": image.uri,
            "TaskCPU": str(self.manifest.cpu),
            "TaskMemory": str(self.manifest.memory),
            "TaskCount": str(self.manifest.count),
            "LogRetention": str(LOG_RETENTION_DAYS),
            "AddonsTemplateURL": self.runtime.addons_template_url or "",
            "EnvFileARN": self.runtime.env_file_arns.get(self.name, ""),
        }

    def _extra_parameter_values(self) -> Dict[str, str]:
        return {}

    def parameters(self) -> List[Dict[str, str]]:
        values = {**self._parameter_values(), **self._extra_parameter_values()}
        return [{"ParameterKey": k, "ParameterValue": v} for k, v in values.items()]

    def _parameter_declarations(self) -> Dict[str, Any]:
        decls: Dict[str, Any] = {}
        for key in {**self._parameter_values(), **self._extra_parameter_values()}:
            decls[key] = {"Type": "String"}
        decls["AddonsTemplateURL"]["Default"] = ""
        decls["EnvFileARN"]["Default"] = ""
        return decls

    # Resources

    def custom_resource_code(self, function: str) -> Dict[str, str]:
        """S3 location of an uploaded custom resource bundle, as Lambda Code."""
        url = self.runtime.custom_resource_urls.get(function)
        if not url:
            raise ConfigurationError(f'custom resource "{function}" was not uploaded for "{self.name}"')
        bucket, key = parse_object_url(url)
        return {"S3Bucket": bucket, "S3Key": key}

    def _custom_resource_function(self, function: str, handler: str = "index.handler") -> Dict[str, Any]:
        return {
            "Type": "AWS::Lambda::Function",
            "Properties": {
                "Code": self.custom_resource_code(function),
                "Handler": handler,
                "Timeout": 900,
                "MemorySize": 512,
                "Role": get_att("CustomResourceRole", "Arn"),
                "Runtime": "nodejs20.x",
            },
        }

    def _container_environment(self) -> List[Dict[str, Any]]:
        variables = {
            "STACKPILOT_APPLICATION_NAME": self.app.name,
            "STACKPILOT_ENVIRONMENT_NAME": self.env.name,
            "STACKPILOT_SERVICE_NAME": self.name,
            "STACKPILOT_SERVICE_DISCOVERY_ENDPOINT": self.runtime.service_discovery_endpoint,
        }
        variables.update(self.manifest.variables)
        variables.update(self._extra_container_variables())
        return [{"Name": k, "Value": variables[k]} for k in sorted(variables)]

    def _extra_container_variables(self) -> Dict[str, Any]:
        return {}

    def _container_definition(self) -> Dict[str, Any]:
        container: Dict[str, Any] = {
            "Name": self.name,
            "Image": ref("ContainerImage"),
            "Essential": True,
            "Environment": self._container_environment(),
            "LogConfiguration": {
                "LogDriver": "awslogs",
                "Options": {
                    "awslogs-region": {"Ref": "AWS::Region"},
                    "awslogs-group": ref("LogGroup"),
                    "awslogs-stream-prefix": "stackpilot",
                },
            },
        }
        if self.manifest.secrets:
            container["Secrets"] = [
                {"Name": k, "ValueFrom": self.manifest.secrets[k]} for k in sorted(self.manifest.secrets)
            ]
        if self.manifest.image.port:
            container["PortMappings"] = [{"ContainerPort": self.manifest.image.port}]
        container["EnvironmentFiles"] = {
            "Fn::If": ["HasEnvFile", [{"Type": "s3", "Value": ref("EnvFileARN")}], {"Ref": "AWS::NoValue"}],
        }
        return container

    def _common_resources(self) -> Dict[str, Any]:
        resources: Dict[str, Any] = {
            "LogGroup": {
                "Type": "AWS::Logs::LogGroup",
                "Properties": {
                    "LogGroupName": {"Fn::Sub": "/stackpilot/${AppName}-${EnvName}-${WorkloadName}"},
                    "RetentionInDays": ref("LogRetention"),
                },
            },
            "ExecutionRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": _assume_role_policy("ecs-tasks.amazonaws.com"),
                    "ManagedPolicyArns": [
                        {"Fn::Sub": "arn:${AWS::Partition}:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"},
                    ],
                    "Policies": [{
                        "PolicyName": "ReadArtifacts",
                        "PolicyDocument": {
                            "Version": "2012-10-17",
                            "Statement": [
                                {
                                    "Effect": "Allow",
                                    "Action": ["s3:GetObject"],
                                    "Resource": {"Fn::Sub": f"arn:${{AWS::Partition}}:s3:::{self.runtime.artifact_bucket}/*"},
                                },
                                {
                                    "Effect": "Allow",
                                    "Action": ["kms:Decrypt"],
                                    "Resource": self.runtime.artifact_key_arn,
                                },
                            ],
                        },
                    }],
                },
            },
            "TaskRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {"AssumeRolePolicyDocument": _assume_role_policy("ecs-tasks.amazonaws.com")},
            },
            "TaskDefinition": {
                "Type": "AWS::ECS::TaskDefinition",
                "Properties": {
                    "Family": {"Fn::Sub": "${AppName}-${EnvName}-${WorkloadName}"},
                    "RequiresCompatibilities": ["FARGATE"],
                    "NetworkMode": "awsvpc",
                    "Cpu": ref("TaskCPU"),
                    "Memory": ref("TaskMemory"),
                    "ExecutionRoleArn": get_att("ExecutionRole", "Arn"),
                    "TaskRoleArn": get_att("TaskRole", "Arn"),
                    "ContainerDefinitions": [self._container_definition()],
                },
            },
            "CustomResourceRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": _assume_role_policy("lambda.amazonaws.com"),
                    "ManagedPolicyArns": [
                        {"Fn::Sub": "arn:${AWS::Partition}:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"},
                    ],
                    "Policies": [{
                        "PolicyName": "CustomResources",
                        "PolicyDocument": {
                            "Version": "2012-10-17",
                            "Statement": [{
                                "Effect": "Allow",
                                "Action": [
                                    "cloudformation:DescribeStacks",
                                    "cloudformation:UpdateStack",
                                    "ecs:DescribeServices",
                                    "elasticloadbalancing:DescribeRules",
                                    "sqs:GetQueueAttributes",
                                    "tag:GetResources",
                                ],
                                "Resource": "*",
                            }],
                        },
                    }],
                },
            },
            "EnvControllerFunction": self._custom_resource_function("EnvControllerFunction"),
            "EnvControllerAction": {
                "Type": "Custom::EnvControllerFunction",
                "Properties": {
                    "ServiceToken": get_att("EnvControllerFunction", "Arn"),
                    "Workload": ref("WorkloadName"),
                    "EnvStack": {"Fn::Sub": "${AppName}-${EnvName}"},
                    "Parameters": self._env_controller_parameters(),
                },
            },
        }
        resources["AddonsStack"] = {
            "Type": "AWS::CloudFormation::Stack",
            "Condition": "HasAddons",
            "Properties": {
                "Parameters": {"App": ref("AppName"), "Env": ref("EnvName"), "Name": ref("WorkloadName")},
                "TemplateURL": ref("AddonsTemplateURL"),
            },
        }
        return resources

    def _env_controller_parameters(self) -> List[str]:
        return []

    @abstractmethod
    def _resources(self) -> Dict[str, Any]:
        pass

    def _outputs(self) -> Dict[str, Any]:
        return {}

    def template(self) -> str:
        resources = self._common_resources()
        resources.update(self._resources())
        outputs = {
            "ServiceDiscoveryEndpoint": {"Value": self.runtime.service_discovery_endpoint},
        }
        outputs.update(self._outputs())
        doc = {
            "AWSTemplateFormatVersion": "2010-09-09",
            "Description": f"CloudFormation template that represents a {self.manifest.type.lower()} on Amazon ECS.",
            "Metadata": {
                "Version": TEMPLATE_VERSION,
                "Manifest": self.config.raw_manifest,
            },
            "Parameters": self._parameter_declarations(),
            "Conditions": {
                "HasAddons": {"Fn::Not": [{"Fn::Equals": [ref("AddonsTemplateURL"), ""]}]},
                "HasEnvFile": {"Fn::Not": [{"Fn::Equals": [ref("EnvFileARN"), ""]}]},
            },
            "Resources": resources,
            "Outputs": outputs,
        }
        return dump_template(doc)


def _assume_role_policy(service: str) -> Dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": "sts:AssumeRole",
        }],
    }
