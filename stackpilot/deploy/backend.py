"""
Backend Service deployer.

Backend services are reachable only inside the environment. With an `http`
block they sit behind the environment's internal ALB, or behind an imported
ALB that must be internal.
"""

from ..environment import Environment
from ..manifest import WorkloadKind, WorkloadManifest
from ..stack import BackendServiceStack
from ..validation import INTERNAL_ALB_RULES, ValidationResult
from .executor import ActionRecommender, NoopActionRecommender
from .workload import VariantDeployer, VariantStrategy


def _recommend(manifest: WorkloadManifest, env: Environment, validation: ValidationResult) -> ActionRecommender:
    return NoopActionRecommender()


class BackendServiceDeployer(VariantDeployer):
    kind = WorkloadKind.BACKEND_SERVICE

    @classmethod
    def strategy(cls) -> VariantStrategy:
        return VariantStrategy(
            kind=cls.kind,
            build_stack=BackendServiceStack,
            recommend=_recommend,
            alb_rules=INTERNAL_ALB_RULES,
        )
