"""
Scheduled Job deployer.

Jobs run as one-off tasks, so there is no long-running service to force
update.
"""

from ..environment import Environment
from ..manifest import WorkloadKind, WorkloadManifest
from ..stack import ScheduledJobStack
from ..validation import ValidationResult
from .executor import ActionRecommender, NoopActionRecommender
from .workload import VariantDeployer, VariantStrategy


def _recommend(manifest: WorkloadManifest, env: Environment, validation: ValidationResult) -> ActionRecommender:
    return NoopActionRecommender()


class ScheduledJobDeployer(VariantDeployer):
    kind = WorkloadKind.SCHEDULED_JOB

    @classmethod
    def strategy(cls) -> VariantStrategy:
        return VariantStrategy(
            kind=cls.kind,
            build_stack=lambda config, _alb: ScheduledJobStack(config),
            recommend=_recommend,
            force_updatable=False,
        )
