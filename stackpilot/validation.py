"""
Load balancer and alias checks run before anything is uploaded or deployed.

Checks apply only to workloads with a non-empty `http` block and run in order,
stopping at the first failure:

1. When the manifest imports an ALB: its scheme must match the workload kind,
   and it must have one listener of any protocol, or else exactly one HTTP
   and exactly one HTTPS listener (whatever the total count).
2. Every routing rule, primary first and then each additional rule, must
   have aliases that the environment's certificates can serve.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .aws.elbv2 import ImportedLoadBalancer
from .environment import App, Environment, EnvironmentConfig
from .errors import (
    AliasOutsideDomainError,
    AliasWithoutCertsError,
    ImportedALBListenerError,
    ImportedALBSchemeError,
    NoAliasWithImportedCertsError,
    RoutingRuleError,
    ValidationError,
)
from .manifest import HTTPConfig, RoutingRule

logger = logging.getLogger(__name__)

SCHEME_INTERNAL = "internal"
SCHEME_INTERNET_FACING = "internet-facing"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a successful validation. Holds the imported ALB snapshot it accepted."""
    imported_alb: Optional[ImportedLoadBalancer] = None


@dataclass(frozen=True)
class ALBRuleSet:
    """
    Per-kind parameters of the ALB checks.

    Attributes:
        expected_scheme: Scheme an imported ALB must have
        certificates: Picks the certificates that serve the kind's listener
        app_domain_aliases: Accept aliases under the application domain when
            the environment has no imported certificates
    """
    expected_scheme: str
    certificates: Callable[[EnvironmentConfig], Tuple[str, ...]]
    app_domain_aliases: bool = False


INTERNAL_ALB_RULES = ALBRuleSet(
    expected_scheme=SCHEME_INTERNAL,
    certificates=lambda config: config.private_certificates,
)

PUBLIC_ALB_RULES = ALBRuleSet(
    expected_scheme=SCHEME_INTERNET_FACING,
    certificates=lambda config: config.public_certificates,
    app_domain_aliases=True,
)


def check_imported_alb(lb: ImportedLoadBalancer, workload: str, expected_scheme: str) -> None:
    """
    Check the shape of an imported load balancer.

    Raises:
        ImportedALBSchemeError: If the scheme does not match
        ImportedALBListenerError: If the listeners cannot front the workload
    """
    if lb.scheme != expected_scheme:
        raise ImportedALBSchemeError(lb.arn, workload, expected_scheme, lb.scheme)

    protocols = lb.listener_protocols()
    if len(protocols) == 0:
        raise ImportedALBListenerError(lb.arn, protocols)
    if len(protocols) == 1:
        return
    if protocols.count("HTTP") != 1 or protocols.count("HTTPS") != 1:
        raise ImportedALBListenerError(lb.arn, protocols)


def alias_in_app_domain(alias: str, domain: str) -> bool:
    """Whether an alias is the app domain or a subdomain of it."""
    alias = alias.lower().rstrip(".")
    domain = domain.lower().rstrip(".")
    return alias == domain or alias.endswith("." + domain)


class ALBRuntimeValidator:
    """Runs the ALB checks for one workload kind."""

    def __init__(self, rules: ALBRuleSet, lb_getter, cert_validator):
        """
        Args:
            rules: Kind-specific parameters
            lb_getter: Object with load_balancer(name_or_arn) -> ImportedLoadBalancer
            cert_validator: Object with validate_cert_aliases(aliases, cert_arns)
        """
        self.rules = rules
        self.lb_getter = lb_getter
        self.cert_validator = cert_validator

    def validate(self, http: HTTPConfig, workload: str, app: App, env: Environment) -> ValidationResult:
        """
        Validate a workload's http block against the environment.

        Returns:
            ValidationResult with the freshly fetched imported ALB, if any

        Raises:
            ValidationError: ImportedALBSchemeError or ImportedALBListenerError
                for a bad imported ALB; RoutingRuleError naming the failing rule
            CollaboratorError: If a lookup fails
        """
        if http.is_empty():
            return ValidationResult()

        lb = None
        if http.alb:
            lb = self.lb_getter.load_balancer(http.alb)
            check_imported_alb(lb, workload, self.rules.expected_scheme)
            logger.debug(f"Imported ALB {lb.arn} accepted for {workload}")

        for path, rule in http.rules():
            try:
                self.validate_rule(rule, workload, app, env)
            except ValidationError as e:
                raise RoutingRuleError(path, e) from e
        return ValidationResult(imported_alb=lb)

    def validate_rule(self, rule: RoutingRule, workload: str, app: App, env: Environment) -> None:
        if rule.is_empty():
            return

        certs: Sequence[str] = self.rules.certificates(env.config)
        if not rule.alias:
            if certs:
                raise NoAliasWithImportedCertsError(workload, env.name)
            return

        if certs:
            self.cert_validator.validate_cert_aliases(rule.alias, certs)
            return

        if not self.rules.app_domain_aliases:
            raise AliasWithoutCertsError(env.name)
        for alias in rule.alias:
            if not app.domain or not alias_in_app_domain(alias, app.domain):
                raise AliasOutsideDomainError(alias, app.domain)
