"""
Elastic Load Balancing v2 lookups for imported load balancers.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listener:
    arn: str
    protocol: str
    port: int


@dataclass(frozen=True)
class ImportedLoadBalancer:
    """Snapshot of a load balancer owned outside the workload's stack."""
    arn: str
    name: str
    scheme: str  # "internal" | "internet-facing"
    dns_name: str = ""
    listeners: Tuple[Listener, ...] = ()

    def listener_protocols(self) -> Tuple[str, ...]:
        return tuple(listener.protocol for listener in self.listeners)


class ELBV2:
    """Fetches load balancer descriptors."""

    def __init__(self, session):
        self._client = session.client("elbv2")

    def load_balancer(self, name_or_arn: str) -> ImportedLoadBalancer:
        """
        Describe a load balancer and its listeners.

        Args:
            name_or_arn: Load balancer name or full ARN

        Returns:
            ImportedLoadBalancer snapshot

        Raises:
            CollaboratorError: If the lookup fails or nothing matches
        """
        if name_or_arn.startswith("arn:"):
            query = {"LoadBalancerArns": [name_or_arn]}
        else:
            query = {"Names": [name_or_arn]}

        try:
            resp = self._client.describe_load_balancers(**query)
            lbs = resp.get("LoadBalancers", [])
            if not lbs:
                raise CollaboratorError("retrieve load balancer", name_or_arn, "no load balancer found")
            lb = lbs[0]

            listeners = []
            paginator = self._client.get_paginator("describe_listeners")
            for page in paginator.paginate(LoadBalancerArn=lb["LoadBalancerArn"]):
                for listener in page.get("Listeners", []):
                    listeners.append(Listener(
                        arn=listener["ListenerArn"],
                        protocol=listener.get("Protocol", ""),
                        port=int(listener.get("Port", 0)),
                    ))
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("retrieve load balancer", name_or_arn, str(e)) from e

        logger.debug(f"Load balancer {lb['LoadBalancerArn']} has {len(listeners)} listener(s)")
        return ImportedLoadBalancer(
            arn=lb["LoadBalancerArn"],
            name=lb.get("LoadBalancerName", name_or_arn),
            scheme=lb.get("Scheme", ""),
            dns_name=lb.get("DNSName", ""),
            listeners=tuple(listeners),
        )
