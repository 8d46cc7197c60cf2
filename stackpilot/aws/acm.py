"""
Certificate Manager checks for routing rule aliases.
"""

from typing import Dict, List, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import AliasNotCoveredError, CollaboratorError


def domain_matches(alias: str, domain: str) -> bool:
    """
    Check whether a certificate domain covers an alias.

    A wildcard domain covers exactly one extra label: "*.example.com" covers
    "api.example.com" but neither "example.com" nor "a.b.example.com".
    """
    alias = alias.lower().rstrip(".")
    domain = domain.lower().rstrip(".")
    if alias == domain:
        return True
    if domain.startswith("*."):
        parts = alias.split(".", 1)
        return len(parts) == 2 and parts[0] != "" and parts[1] == domain[2:]
    return False


class ACM:
    """Validates aliases against imported certificates."""

    def __init__(self, session):
        self._client = session.client("acm")

    def certificate_domains(self, cert_arn: str) -> List[str]:
        try:
            resp = self._client.describe_certificate(CertificateArn=cert_arn)
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("describe certificate", cert_arn, str(e)) from e

        cert = resp.get("Certificate", {})
        domains = [cert["DomainName"]] if cert.get("DomainName") else []
        for san in cert.get("SubjectAlternativeNames", []):
            if san not in domains:
                domains.append(san)
        return domains

    def validate_cert_aliases(self, aliases: Sequence[str], cert_arns: Sequence[str]) -> None:
        """
        Ensure every alias is covered by at least one certificate.

        Raises:
            AliasNotCoveredError: Naming the first alias no certificate covers
            CollaboratorError: If a certificate cannot be described
        """
        domains: Dict[str, List[str]] = {arn: self.certificate_domains(arn) for arn in cert_arns}
        for alias in aliases:
            if not any(domain_matches(alias, d) for cert_domains in domains.values() for d in cert_domains):
                raise AliasNotCoveredError(alias, cert_arns)
