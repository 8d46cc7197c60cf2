"""
Deployer registry for selecting the deployer of a manifest's workload kind.
"""

import logging
from typing import Dict, List, Optional, Type

from ..errors import ConfigurationError
from ..manifest import WorkloadKind
from .backend import BackendServiceDeployer
from .job import ScheduledJobDeployer
from .lbws import LoadBalancedWebServiceDeployer
from .worker import WorkerServiceDeployer
from .workload import DeployClients, StackBuilder, VariantDeployer, WorkloadDeployerInput

logger = logging.getLogger(__name__)


# Registry of all available deployers
DEPLOYERS: Dict[WorkloadKind, Type[VariantDeployer]] = {
    WorkloadKind.BACKEND_SERVICE: BackendServiceDeployer,
    WorkloadKind.LOAD_BALANCED_WEB_SERVICE: LoadBalancedWebServiceDeployer,
    WorkloadKind.WORKER_SERVICE: WorkerServiceDeployer,
    WorkloadKind.SCHEDULED_JOB: ScheduledJobDeployer,
}


def deployer_for(in_: WorkloadDeployerInput, clients: DeployClients,
                 stack_factory: Optional[StackBuilder] = None) -> VariantDeployer:
    """
    Build the deployer for the manifest's workload kind.

    Args:
        in_: Deployer input
        clients: Collaborators of the deploy session
        stack_factory: Optional replacement for stack assembly

    Returns:
        The matching VariantDeployer

    Raises:
        ConfigurationError: If no deployer handles the manifest's kind
    """
    kind = in_.manifest.kind
    deployer_cls = DEPLOYERS.get(kind)
    if deployer_cls is None:
        raise ConfigurationError(f'no deployer for workload kind "{kind.value}"')

    logger.info(f"Selected {deployer_cls.__name__} for {in_.manifest.name}")
    return deployer_cls(in_, clients, stack_factory)


def list_workload_kinds() -> List[str]:
    """List all workload kinds that can be deployed."""
    return [kind.value for kind in DEPLOYERS]
