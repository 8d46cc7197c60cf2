"""
CloudFormation stack configurations for each workload kind.
"""

import json
import re
from abc import abstractmethod
from typing import Any, Dict, List, Optional

from ..aws.elbv2 import ImportedLoadBalancer
from ..errors import InvalidManifestError
from ..manifest import (
    BackendServiceManifest,
    HTTPConfig,
    LoadBalancedWebServiceManifest,
    RoutingRule,
    ScheduledJobManifest,
    WorkerServiceManifest,
)
from .base import WorkloadStack, WorkloadStackConfig, get_att, import_value, ref

DEFAULT_CONTAINER_PORT = 80


def path_patterns(path: Optional[str]) -> List[str]:
    """Listener rule path patterns for a manifest path."""
    if not path or path == "/":
        return ["/*"]
    path = "/" + path.strip("/")
    return [path, f"{path}/*"]


def _logical_id(*parts: str) -> str:
    return "".join(re.sub(r"[^A-Za-z0-9]", "", p.title()) for p in parts)


def _preferred_listener_arn(lb: ImportedLoadBalancer) -> str:
    for listener in lb.listeners:
        if listener.protocol == "HTTPS":
            return listener.arn
    return lb.listeners[0].arn


class ServiceStack(WorkloadStack):
    """Long-running ECS service, optionally behind a load balancer."""

    def _service(self, load_balancers: List[Dict[str, Any]], depends_on: List[str]) -> Dict[str, Any]:
        service: Dict[str, Any] = {
            "Type": "AWS::ECS::Service",
            "Properties": {
                "Cluster": import_value(self.app.name, self.env.name, "ClusterId"),
                "TaskDefinition": ref("TaskDefinition"),
                "DesiredCount": get_att("DynamicDesiredCountAction", "DesiredCount"),
                "LaunchType": "FARGATE",
                "DeploymentConfiguration": {
                    "MinimumHealthyPercent": 100,
                    "MaximumPercent": 200,
                    "DeploymentCircuitBreaker": {"Enable": True, "Rollback": True},
                },
                "NetworkConfiguration": {
                    "AwsvpcConfiguration": {
                        "AssignPublicIp": "DISABLED",
                        "Subnets": {"Fn::Split": [",", import_value(self.app.name, self.env.name, "PrivateSubnets")]},
                        "SecurityGroups": [import_value(self.app.name, self.env.name, "EnvironmentSecurityGroup")],
                    },
                },
            },
        }
        if load_balancers:
            service["Properties"]["LoadBalancers"] = load_balancers
            service["Properties"]["HealthCheckGracePeriodSeconds"] = 60
        if depends_on:
            service["DependsOn"] = depends_on
        return service

    def _desired_count_resources(self) -> Dict[str, Any]:
        return {
            "DynamicDesiredCountFunction": self._custom_resource_function("DynamicDesiredCountFunction"),
            "DynamicDesiredCountAction": {
                "Type": "Custom::DynamicDesiredCountFunction",
                "Properties": {
                    "ServiceToken": get_att("DynamicDesiredCountFunction", "Arn"),
                    "Cluster": import_value(self.app.name, self.env.name, "ClusterId"),
                    "App": ref("AppName"),
                    "Env": ref("EnvName"),
                    "Svc": ref("WorkloadName"),
                    "DefaultDesiredCount": ref("TaskCount"),
                },
            },
        }


class HTTPServiceStack(ServiceStack):
    """Service whose http rules become target groups and listener rules."""

    imported_alb: Optional[ImportedLoadBalancer] = None

    def __init__(self, config: WorkloadStackConfig, imported_alb: Optional[ImportedLoadBalancer] = None):
        super().__init__(config)
        self.imported_alb = imported_alb

    @property
    def http(self) -> HTTPConfig:
        return self.manifest.http  # type: ignore[attr-defined]

    @abstractmethod
    def _env_listener_arn(self) -> Dict[str, Any]:
        pass

    def listener_arn(self) -> Any:
        if self.imported_alb is not None:
            return _preferred_listener_arn(self.imported_alb)
        return self._env_listener_arn()

    def _target_port(self, rule: RoutingRule) -> int:
        return rule.target_port or self.manifest.image.port or DEFAULT_CONTAINER_PORT

    def _extra_parameter_values(self) -> Dict[str, str]:
        if self.http.is_empty():
            return {}
        return {"ContainerPort": str(self._target_port(self.http.main))}

    def _http_resources(self) -> Dict[str, Any]:
        if self.http.is_empty():
            return {}

        listener_arn = self.listener_arn()
        resources: Dict[str, Any] = {
            "RulePriorityFunction": self._custom_resource_function("RulePriorityFunction"),
        }
        load_balancers = []
        rules = []
        for idx, (_, rule) in enumerate(self.http.rules()):
            if rule.is_empty():
                continue
            suffix = "" if idx == 0 else str(idx)
            port = self._target_port(rule)
            resources[f"TargetGroup{suffix}"] = {
                "Type": "AWS::ElasticLoadBalancingV2::TargetGroup",
                "Properties": {
                    "HealthCheckPath": rule.healthcheck or "/",
                    "Port": port,
                    "Protocol": "HTTP",
                    "TargetType": "ip",
                    "VpcId": import_value(self.app.name, self.env.name, "VpcId"),
                },
            }
            resources[f"HTTPRulePriorityAction{suffix}"] = {
                "Type": "Custom::RulePriorityFunction",
                "Properties": {
                    "ServiceToken": get_att("RulePriorityFunction", "Arn"),
                    "RulePath": path_patterns(rule.path),
                    "ListenerArn": listener_arn,
                },
            }
            conditions: List[Dict[str, Any]] = [
                {"Field": "path-pattern", "PathPatternConfig": {"Values": path_patterns(rule.path)}},
            ]
            if rule.alias:
                conditions.append({"Field": "host-header", "HostHeaderConfig": {"Values": list(rule.alias)}})
            resources[f"HTTPListenerRule{suffix}"] = {
                "Type": "AWS::ElasticLoadBalancingV2::ListenerRule",
                "Properties": {
                    "Actions": [{"TargetGroupArn": ref(f"TargetGroup{suffix}"), "Type": "forward"}],
                    "Conditions": conditions,
                    "ListenerArn": listener_arn,
                    "Priority": get_att(f"HTTPRulePriorityAction{suffix}", "Priority"),
                },
            }
            load_balancers.append({
                "ContainerName": self.name,
                "ContainerPort": port,
                "TargetGroupArn": ref(f"TargetGroup{suffix}"),
            })
            rules.append(f"HTTPListenerRule{suffix}")

        resources["Service"] = self._service(load_balancers, rules)
        return resources

    def _resources(self) -> Dict[str, Any]:
        resources = self._desired_count_resources()
        http_resources = self._http_resources()
        if http_resources:
            resources.update(http_resources)
        else:
            resources["Service"] = self._service([], [])
        return resources

    def _outputs(self) -> Dict[str, Any]:
        if self.imported_alb is None:
            return {}
        return {"ImportedLoadBalancerDNSName": {"Value": self.imported_alb.dns_name}}


class BackendServiceStack(HTTPServiceStack):
    """Backend service: reachable inside the VPC, optionally through an internal ALB."""

    def __init__(self, config: WorkloadStackConfig, imported_alb: Optional[ImportedLoadBalancer] = None):
        if not isinstance(config.manifest, BackendServiceManifest):
            raise TypeError("BackendServiceStack requires a BackendServiceManifest")
        super().__init__(config, imported_alb)

    def _env_listener_arn(self) -> Dict[str, Any]:
        if self.env.config.has_imported_private_certs:
            return import_value(self.app.name, self.env.name, "InternalHTTPSListenerArn")
        return import_value(self.app.name, self.env.name, "InternalHTTPListenerArn")

    def _env_controller_parameters(self) -> List[str]:
        if self.http.is_empty() or self.imported_alb is not None:
            return []
        return ["InternalALBWorkloads"]


class LoadBalancedWebServiceStack(HTTPServiceStack):
    """Web service behind the environment's internet-facing ALB."""

    def __init__(self, config: WorkloadStackConfig, imported_alb: Optional[ImportedLoadBalancer] = None):
        if not isinstance(config.manifest, LoadBalancedWebServiceManifest):
            raise TypeError("LoadBalancedWebServiceStack requires a LoadBalancedWebServiceManifest")
        super().__init__(config, imported_alb)

    def _env_listener_arn(self) -> Dict[str, Any]:
        if self.env.config.has_imported_public_certs or self.app.domain:
            return import_value(self.app.name, self.env.name, "HTTPSListenerArn")
        return import_value(self.app.name, self.env.name, "HTTPListenerArn")

    def _env_controller_parameters(self) -> List[str]:
        if self.imported_alb is not None:
            return []
        params = ["ALBWorkloads"]
        if any(rule.alias for _, rule in self.http.rules()):
            params.append("Aliases")
        return params


class WorkerServiceStack(ServiceStack):
    """Queue-driven worker subscribed to other services' topics."""

    def __init__(self, config: WorkloadStackConfig):
        if not isinstance(config.manifest, WorkerServiceManifest):
            raise TypeError("WorkerServiceStack requires a WorkerServiceManifest")
        super().__init__(config)

    def topic_arn(self, service: str, topic: str) -> Dict[str, str]:
        return {"Fn::Sub": f"arn:${{AWS::Partition}}:sns:${{AWS::Region}}:${{AWS::AccountId}}:${{AppName}}-${{EnvName}}-{service}-{topic}"}

    def _extra_container_variables(self) -> Dict[str, Any]:
        return {"STACKPILOT_QUEUE_URI": ref("EventsQueue")}

    def _backlog_function(self) -> Dict[str, Any]:
        function = self._custom_resource_function("BacklogPerTaskCalculatorFunction")
        function["Properties"]["Environment"] = {"Variables": {
            "QUEUE_URL": ref("EventsQueue"),
            "QUEUE_NAME": get_att("EventsQueue", "QueueName"),
            "CLUSTER_ID": import_value(self.app.name, self.env.name, "ClusterId"),
            "SERVICE_NAME": get_att("Service", "Name"),
            "NAMESPACE": {"Fn::Sub": "${AppName}-${EnvName}-${WorkloadName}"},
        }}
        return function

    def _resources(self) -> Dict[str, Any]:
        topics = self.manifest.subscribe.topics  # type: ignore[attr-defined]
        resources = self._desired_count_resources()
        resources.update({
            "EventsQueue": {
                "Type": "AWS::SQS::Queue",
                "Properties": {"KmsMasterKeyId": "alias/aws/sqs", "MessageRetentionPeriod": 345600},
            },
            "QueueAccessPolicy": {
                "Type": "AWS::IAM::Policy",
                "Properties": {
                    "PolicyName": "ConsumeEventsQueue",
                    "Roles": [ref("TaskRole")],
                    "PolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Action": ["sqs:ReceiveMessage", "sqs:DeleteMessage", "sqs:ChangeMessageVisibility"],
                            "Resource": get_att("EventsQueue", "Arn"),
                        }],
                    },
                },
            },
            "BacklogPerTaskCalculatorFunction": self._backlog_function(),
            "BacklogPerTaskCalculatorSchedule": {
                "Type": "AWS::Events::Rule",
                "Properties": {
                    "ScheduleExpression": "rate(1 minute)",
                    "Targets": [{"Arn": get_att("BacklogPerTaskCalculatorFunction", "Arn"), "Id": "BacklogPerTaskCalculator"}],
                },
            },
            "BacklogPerTaskCalculatorPermission": {
                "Type": "AWS::Lambda::Permission",
                "Properties": {
                    "Action": "lambda:InvokeFunction",
                    "FunctionName": ref("BacklogPerTaskCalculatorFunction"),
                    "Principal": "events.amazonaws.com",
                    "SourceArn": get_att("BacklogPerTaskCalculatorSchedule", "Arn"),
                },
            },
            "Service": self._service([], []),
        })
        if topics:
            resources["EventsQueuePolicy"] = {
                "Type": "AWS::SQS::QueuePolicy",
                "Properties": {
                    "Queues": [ref("EventsQueue")],
                    "PolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Principal": {"Service": "sns.amazonaws.com"},
                            "Action": "sqs:SendMessage",
                            "Resource": get_att("EventsQueue", "Arn"),
                            "Condition": {"ArnEquals": {"aws:SourceArn": [self.topic_arn(t.service, t.name) for t in topics]}},
                        }],
                    },
                },
            }
        for topic in topics:
            resources[_logical_id(topic.service, topic.name, "Subscription")] = {
                "Type": "AWS::SNS::Subscription",
                "Properties": {
                    "TopicArn": self.topic_arn(topic.service, topic.name),
                    "Protocol": "sqs",
                    "Endpoint": get_att("EventsQueue", "Arn"),
                },
            }
        return resources

    def _outputs(self) -> Dict[str, Any]:
        return {"EventsQueueURI": {"Value": ref("EventsQueue")}}


_PREDEFINED_SCHEDULES = {
    "@yearly": "cron(0 0 1 1 ? *)",
    "@annually": "cron(0 0 1 1 ? *)",
    "@monthly": "cron(0 0 1 * ? *)",
    "@weekly": "cron(0 0 ? * 1 *)",
    "@daily": "cron(0 0 * * ? *)",
    "@midnight": "cron(0 0 * * ? *)",
    "@hourly": "cron(0 * * * ? *)",
}
_DURATION_RE = re.compile(r"(\d+)(h|m|s)")
_RATE_UNITS = {"h": "hour", "m": "minute"}


def duration_seconds(value: str) -> int:
    """Parse durations such as "1h30m" or "45s"."""
    parts = _DURATION_RE.findall(value)
    if not parts or "".join(n + u for n, u in parts) != value:
        raise ValueError(f'invalid duration "{value}"')
    factor = {"h": 3600, "m": 60, "s": 1}
    return sum(int(n) * factor[u] for n, u in parts)


def schedule_expression(schedule: str) -> str:
    """
    Convert a manifest schedule into an EventBridge schedule expression.

    Accepts predefined schedules (@daily ...), "@every <duration>", 5-field
    cron and already-formed rate()/cron() expressions.
    """
    schedule = schedule.strip()
    if schedule in _PREDEFINED_SCHEDULES:
        return _PREDEFINED_SCHEDULES[schedule]
    if schedule.startswith(("rate(", "cron(")):
        return schedule
    if schedule.startswith("@every "):
        seconds = duration_seconds(schedule[len("@every "):].strip())
        if seconds % 3600 == 0:
            n, unit = seconds // 3600, "h"
        elif seconds % 60 == 0:
            n, unit = seconds // 60, "m"
        else:
            raise ValueError(f'schedule "{schedule}" must be a whole number of minutes')
        return f"rate({n} {_RATE_UNITS[unit]}{'' if n == 1 else 's'})"

    fields = schedule.split()
    if len(fields) != 5:
        raise ValueError(f'invalid schedule "{schedule}"')
    minute, hour, dom, month, dow = fields
    # EventBridge wants exactly one of day-of-month / day-of-week to be "?".
    if dow == "*":
        dow = "?"
    elif dom == "*":
        dom = "?"
    return f"cron({minute} {hour} {dom} {month} {dow} *)"


class ScheduledJobStack(WorkloadStack):
    """Task run on a schedule through a Step Functions state machine."""

    def __init__(self, config: WorkloadStackConfig):
        if not isinstance(config.manifest, ScheduledJobManifest):
            raise TypeError("ScheduledJobStack requires a ScheduledJobManifest")
        super().__init__(config)

    def _extra_parameter_values(self) -> Dict[str, str]:
        try:
            schedule = schedule_expression(self.manifest.on.schedule)  # type: ignore[attr-defined]
        except ValueError as e:
            raise InvalidManifestError(self.name, f"on.schedule: {e}") from e
        return {"Schedule": schedule}

    def _state_machine_definition(self) -> Dict[str, Any]:
        task: Dict[str, Any] = {
            "Type": "Task",
            "Resource": "arn:${AWS::Partition}:states:::ecs:runTask.sync",
            "Parameters": {
                "LaunchType": "FARGATE",
                "Cluster": "${Cluster}",
                "TaskDefinition": "${TaskDefinition}",
                "NetworkConfiguration": {
                    "AwsvpcConfiguration": {"Subnets": ["${Subnets}"], "AssignPublicIp": "DISABLED"},
                },
            },
            "End": True,
        }
        if self.manifest.retries:  # type: ignore[attr-defined]
            task["Retry"] = [{
                "ErrorEquals": ["States.ALL"],
                "IntervalSeconds": 10,
                "MaxAttempts": self.manifest.retries,  # type: ignore[attr-defined]
                "BackoffRate": 1.5,
            }]
        definition: Dict[str, Any] = {
            "Comment": "Run the scheduled job task",
            "StartAt": "Run Fargate Task",
            "States": {"Run Fargate Task": task},
        }
        if self.manifest.timeout:  # type: ignore[attr-defined]
            try:
                definition["TimeoutSeconds"] = duration_seconds(self.manifest.timeout)  # type: ignore[attr-defined]
            except ValueError as e:
                raise InvalidManifestError(self.name, f"timeout: {e}") from e
        return definition

    def _resources(self) -> Dict[str, Any]:
        definition = json.dumps(self._state_machine_definition(), sort_keys=True)
        return {
            "StateMachineRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Principal": {"Service": "states.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }],
                    },
                    "Policies": [{
                        "PolicyName": "RunTask",
                        "PolicyDocument": {
                            "Version": "2012-10-17",
                            "Statement": [
                                {"Effect": "Allow", "Action": ["ecs:RunTask", "ecs:StopTask", "ecs:DescribeTasks"], "Resource": "*"},
                                {"Effect": "Allow", "Action": "iam:PassRole",
                                 "Resource": [get_att("ExecutionRole", "Arn"), get_att("TaskRole", "Arn")]},
                            ],
                        },
                    }],
                },
            },
            "StateMachine": {
                "Type": "AWS::StepFunctions::StateMachine",
                "Properties": {
                    "RoleArn": get_att("StateMachineRole", "Arn"),
                    "DefinitionString": {"Fn::Sub": [definition, {
                        "Cluster": import_value(self.app.name, self.env.name, "ClusterId"),
                        "TaskDefinition": ref("TaskDefinition"),
                        "Subnets": {"Fn::Join": ['","', {"Fn::Split": [",", import_value(self.app.name, self.env.name, "PrivateSubnets")]}]},
                    }]},
                },
            },
            "RuleRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Principal": {"Service": "events.amazonaws.com"},
                            "Action": "sts:AssumeRole",
                        }],
                    },
                    "Policies": [{
                        "PolicyName": "StartStateMachine",
                        "PolicyDocument": {
                            "Version": "2012-10-17",
                            "Statement": [{"Effect": "Allow", "Action": "states:StartExecution", "Resource": ref("StateMachine")}],
                        },
                    }],
                },
            },
            "Rule": {
                "Type": "AWS::Events::Rule",
                "Properties": {
                    "ScheduleExpression": ref("Schedule"),
                    "State": "ENABLED",
                    "Targets": [{"Arn": ref("StateMachine"), "Id": "StateMachine", "RoleArn": get_att("RuleRole", "Arn")}],
                },
            },
        }
