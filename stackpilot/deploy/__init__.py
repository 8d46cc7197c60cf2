"""
Workload deployers.
"""

from .backend import BackendServiceDeployer
from .executor import (
    ActionRecommender,
    DeployExecutor,
    DeployOptions,
    DNSAliasRecommender,
    NoopActionRecommender,
    QueueRecommender,
)
from .job import ScheduledJobDeployer
from .lbws import LoadBalancedWebServiceDeployer
from .registry import deployer_for, list_workload_kinds
from .worker import WorkerServiceDeployer
from .workload import (
    DeployClients,
    DeployWorkloadInput,
    GenerateCloudFormationTemplateInput,
    GenerateCloudFormationTemplateOutput,
    VariantDeployer,
    WorkloadDeployer,
    WorkloadDeployerInput,
    stack_runtime_configuration,
)

__all__ = [
    "ActionRecommender",
    "BackendServiceDeployer",
    "DNSAliasRecommender",
    "DeployClients",
    "DeployExecutor",
    "DeployOptions",
    "DeployWorkloadInput",
    "GenerateCloudFormationTemplateInput",
    "GenerateCloudFormationTemplateOutput",
    "LoadBalancedWebServiceDeployer",
    "NoopActionRecommender",
    "QueueRecommender",
    "ScheduledJobDeployer",
    "VariantDeployer",
    "WorkerServiceDeployer",
    "WorkloadDeployer",
    "WorkloadDeployerInput",
    "deployer_for",
    "list_workload_kinds",
    "stack_runtime_configuration",
]
