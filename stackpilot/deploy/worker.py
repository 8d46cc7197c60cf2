"""
Worker Service deployer.

Workers have no load balancer, so there is nothing to validate before the
stack is built.
"""

from ..environment import Environment
from ..manifest import WorkloadKind, WorkloadManifest
from ..stack import WorkerServiceStack
from ..validation import ValidationResult
from .executor import ActionRecommender, QueueRecommender
from .workload import VariantDeployer, VariantStrategy


def _recommend(manifest: WorkloadManifest, env: Environment, validation: ValidationResult) -> ActionRecommender:
    return QueueRecommender(manifest.name, manifest.subscribe.topics)  # type: ignore[attr-defined]


class WorkerServiceDeployer(VariantDeployer):
    kind = WorkloadKind.WORKER_SERVICE

    @classmethod
    def strategy(cls) -> VariantStrategy:
        return VariantStrategy(
            kind=cls.kind,
            build_stack=lambda config, _alb: WorkerServiceStack(config),
            recommend=_recommend,
        )
