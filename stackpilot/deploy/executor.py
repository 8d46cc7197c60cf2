"""
Stack execution and post-deploy recommendations.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from ..errors import EmptyChangeSetError, NoInfrastructureChangesError
from ..manifest import Topic
from ..stack.base import StackConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployOptions:
    force_new_update: bool = False
    disable_rollback: bool = False
    detach: bool = False


class ActionRecommender(ABC):
    """A suggested follow-up after a successful deploy."""

    @abstractmethod
    def recommended_actions(self) -> List[str]:
        pass


class NoopActionRecommender(ActionRecommender):
    def recommended_actions(self) -> List[str]:
        return []


class DNSAliasRecommender(ActionRecommender):
    """Aliases served by imported certificates need DNS records the user owns."""

    def __init__(self, aliases: Sequence[str], env: str, lb_dns_name: Optional[str] = None):
        self.aliases = list(aliases)
        self.env = env
        self.lb_dns_name = lb_dns_name

    def recommended_actions(self) -> List[str]:
        target = f'"{self.lb_dns_name}"' if self.lb_dns_name else f'the load balancer of environment "{self.env}"'
        return [f'Update the DNS record of "{alias}" to point to {target}.' for alias in self.aliases]


class QueueRecommender(ActionRecommender):
    """Workers need code that consumes the queue stackpilot created."""

    def __init__(self, workload: str, topics: Sequence[Topic]):
        self.workload = workload
        self.topics = list(topics)

    def recommended_actions(self) -> List[str]:
        if not self.topics:
            return []
        names = ", ".join(f"{t.service}/{t.name}" for t in self.topics)
        return [
            f'Update {self.workload}\'s code to read messages for {names} from the queue in the '
            f'"STACKPILOT_QUEUE_URI" environment variable.'
        ]


class DeployExecutor:
    """Hands a stack configuration to the stack engine and applies force updates."""

    def __init__(self, engine, bucket: Optional[str], role_arn: Optional[str], updater=None):
        """
        Args:
            engine: Object with deploy_stack(conf, bucket, role_arn, detach, disable_rollback)
            bucket: Artifact bucket for oversized templates
            role_arn: Environment CloudFormation execution role
            updater: Env-scoped service updater, or None when the kind cannot be force updated
        """
        self.engine = engine
        self.bucket = bucket
        self.role_arn = role_arn
        self.updater = updater

    def execute(self, conf: StackConfiguration, app: str, env: str, workload: str,
                options: DeployOptions, started_at: datetime) -> None:
        """
        Deploy the stack.

        With `force_new_update`, an empty change set is not an error, and a
        service that has not been redeployed since `started_at` is forced to
        start a new deployment.

        Raises:
            NoInfrastructureChangesError: If nothing changed and no force update was requested
            StackExecutionError: If the engine fails
        """
        try:
            self.engine.deploy_stack(
                conf,
                bucket=self.bucket,
                role_arn=self.role_arn,
                detach=options.detach,
                disable_rollback=options.disable_rollback,
            )
        except EmptyChangeSetError as e:
            if not options.force_new_update:
                raise NoInfrastructureChangesError(conf.stack_name()) from e
            logger.info(f"No infrastructure changes for {conf.stack_name()}")

        if not options.force_new_update:
            return
        if self.updater is None:
            logger.warning(f"{workload} cannot be force updated; skipping")
            return
        if self.updater.last_updated_at(app, env, workload) < started_at:
            self.updater.force_update(app, env, workload)
