"""
Error classes for stackpilot deployments.

The taxonomy lets a caller decide exit codes and retry eligibility without
parsing messages:
- ConfigurationError: wiring mistakes (wrong manifest for a deployer, missing
  packaged bundle). Never retryable.
- ValidationError: user-fixable manifest/environment mistakes found before
  anything is mutated. Never retried automatically.
- CollaboratorError: an AWS or docker call failed. Carries the operation and
  the resource it targeted; the underlying exception is chained as __cause__.
- UploadPhaseError: one artifact upload phase failed after earlier phases
  completed.
"""

from typing import List, Optional, Sequence


class StackpilotError(Exception):
    """Base exception for stackpilot."""
    pass


# Fatal configuration errors

class ConfigurationError(StackpilotError):
    """A programming or packaging mistake. Do not retry."""
    pass


class ManifestKindMismatchError(ConfigurationError):
    """A deployer was handed a manifest of another workload kind."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"manifest is not of type {expected} (got {actual})")


class CustomResourceBundleError(ConfigurationError):
    """The custom resource bundle for a workload kind cannot be read."""

    def __init__(self, kind: str, path: str, reason: str):
        self.kind = kind
        self.path = path
        self.reason = reason
        super().__init__(f'read custom resources for a "{kind}": {path}: {reason}')


# Validation errors

class ValidationError(StackpilotError):
    """A user-fixable infrastructure constraint violation."""
    pass


class InvalidManifestError(ValidationError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"invalid manifest {source}: {reason}")


class ImportedALBSchemeError(ValidationError):
    def __init__(self, arn: str, workload: str, expected: str, actual: str):
        self.arn = arn
        self.workload = workload
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'imported ALB "{arn}" for "{workload}" should have "{expected}" Scheme value, got "{actual}"'
        )


class ImportedALBListenerError(ValidationError):
    def __init__(self, arn: str, protocols: Sequence[str]):
        self.arn = arn
        self.protocols = list(protocols)
        if not self.protocols:
            message = (
                f'imported ALB "{arn}" must have at least one listener. '
                "For two listeners, one must be of protocol HTTP and the other of protocol HTTPS"
            )
        else:
            message = (
                f'imported ALB "{arn}" must have exactly one listener of protocol HTTP '
                f"and exactly one listener of protocol HTTPS (found {', '.join(self.protocols)})"
            )
        super().__init__(message)


class NoAliasWithImportedCertsError(ValidationError):
    def __init__(self, workload: str, env: str):
        self.workload = workload
        self.env = env
        super().__init__(
            f'cannot deploy service "{workload}" without "http.alias" to environment "{env}" '
            "with certificate imported"
        )


class AliasWithoutCertsError(ValidationError):
    def __init__(self, env: str):
        self.env = env
        super().__init__(f'cannot specify "alias" in an environment without imported certs (env "{env}")')


class AliasNotCoveredError(ValidationError):
    def __init__(self, alias: str, certificates: Sequence[str]):
        self.alias = alias
        self.certificates = list(certificates)
        super().__init__(
            f'alias "{alias}" is not supported in any of the imported certificates: {", ".join(self.certificates)}'
        )


class AliasOutsideDomainError(ValidationError):
    def __init__(self, alias: str, domain: Optional[str]):
        self.alias = alias
        self.domain = domain
        if domain:
            message = f'alias "{alias}" is not under the application domain "{domain}"'
        else:
            message = f'cannot specify alias "{alias}" when the application has no domain and the environment has no imported certificates'
        super().__init__(message)


class RoutingRuleError(ValidationError):
    """Attributes a routing-rule failure to its location in the manifest."""

    def __init__(self, path: str, reason: StackpilotError):
        self.path = path
        self.reason = reason
        super().__init__(f'validate ALB runtime configuration for "{path}": {reason}')


class TemplateOverrideError(ValidationError):
    def __init__(self, index: int, path: str, reason: str):
        self.index = index
        self.path = path
        self.reason = reason
        super().__init__(f'apply override patch [{index}] at "{path}": {reason}')


class AddonsMergeError(ValidationError):
    def __init__(self, section: str, logical_id: str, files: List[str]):
        self.section = section
        self.logical_id = logical_id
        self.files = files
        super().__init__(
            f'{section} logical ID "{logical_id}" is defined differently in {" and ".join(files)}'
        )


# Collaborator errors

class CollaboratorError(StackpilotError):
    """An external call failed. The original exception is the __cause__."""

    def __init__(self, operation: str, resource: str, detail: Optional[str] = None):
        self.operation = operation
        self.resource = resource
        self.detail = detail
        message = f'{operation} "{resource}"'
        if detail:
            message += f": {detail}"
        super().__init__(message)


class StackExecutionError(CollaboratorError):
    """CloudFormation rejected or failed the stack operation."""
    pass


class EmptyChangeSetError(StackExecutionError):
    """CloudFormation found nothing to update."""

    def __init__(self, stack_name: str):
        super().__init__("deploy stack", stack_name, "no updates are to be performed")


class UploadPhaseError(StackpilotError):
    """An upload phase failed. `partial` holds the phases completed before it."""

    def __init__(self, phase: str, partial, cause: Exception):
        self.phase = phase
        self.partial = partial
        self.cause = cause
        super().__init__(f"upload artifacts: {phase}: {cause}")


class NoInfrastructureChangesError(StackpilotError):
    """The stack is already up to date and no force update was requested."""

    def __init__(self, stack_name: str):
        self.stack_name = stack_name
        super().__init__(f'stack "{stack_name}" has no infrastructure changes; use --force to force an update')
