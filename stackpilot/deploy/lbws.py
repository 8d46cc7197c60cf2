"""
Load Balanced Web Service deployer.
"""

from ..environment import Environment
from ..manifest import WorkloadKind, WorkloadManifest
from ..stack import LoadBalancedWebServiceStack
from ..validation import PUBLIC_ALB_RULES, ValidationResult
from .executor import ActionRecommender, DNSAliasRecommender, NoopActionRecommender
from .workload import VariantDeployer, VariantStrategy


def _recommend(manifest: WorkloadManifest, env: Environment, validation: ValidationResult) -> ActionRecommender:
    # Aliases under the app domain get their records from the environment stack.
    if not env.config.has_imported_public_certs and validation.imported_alb is None:
        return NoopActionRecommender()

    aliases = []
    for _, rule in manifest.http.rules():  # type: ignore[attr-defined]
        for alias in rule.alias:
            if alias not in aliases:
                aliases.append(alias)
    if not aliases:
        return NoopActionRecommender()

    dns_name = validation.imported_alb.dns_name if validation.imported_alb else None
    return DNSAliasRecommender(aliases, env.name, dns_name)


class LoadBalancedWebServiceDeployer(VariantDeployer):
    kind = WorkloadKind.LOAD_BALANCED_WEB_SERVICE

    @classmethod
    def strategy(cls) -> VariantStrategy:
        return VariantStrategy(
            kind=cls.kind,
            build_stack=LoadBalancedWebServiceStack,
            recommend=_recommend,
            alb_rules=PUBLIC_ALB_RULES,
        )
