"""
ECS service lookups and forced redeployments.

Services are found through the Resource Groups Tagging API using the tags
stackpilot puts on every workload stack.
"""

import logging
from datetime import datetime
from typing import Tuple

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CollaboratorError
from ..tags import workload_tag_filters

logger = logging.getLogger(__name__)


def cluster_and_service_from_arn(arn: str) -> Tuple[str, str]:
    """
    Split an ECS service ARN into cluster and service names.

    ARN format: arn:partition:ecs:region:account-id:service/cluster-name/service-name
    """
    resource = arn.split(":", 5)[-1]
    parts = resource.split("/")
    if len(parts) != 3 or parts[0] != "service":
        raise ValueError(f"not an ECS service ARN: {arn}")
    return parts[1], parts[2]


class ECSServiceUpdater:
    """Force-updates a workload's ECS service in its environment."""

    def __init__(self, session, wait: bool = True):
        self._ecs = session.client("ecs")
        self._tagging = session.client("resourcegroupstaggingapi")
        self._wait = wait

    def service_arn(self, app: str, env: str, workload: str) -> str:
        arns = []
        try:
            paginator = self._tagging.get_paginator("get_resources")
            for page in paginator.paginate(
                ResourceTypeFilters=["ecs:service"],
                TagFilters=workload_tag_filters(app, env, workload),
            ):
                for resource in page.get("ResourceTagMappingList", []):
                    arns.append(resource["ResourceARN"])
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("find ECS service", f"{app}/{env}/{workload}", str(e)) from e

        if len(arns) != 1:
            raise CollaboratorError("find ECS service", f"{app}/{env}/{workload}",
                                    f"expected exactly one service, found {len(arns)}")
        return arns[0]

    def last_updated_at(self, app: str, env: str, workload: str) -> datetime:
        """Most recent deployment update time of the workload's service."""
        arn = self.service_arn(app, env, workload)
        cluster, service = cluster_and_service_from_arn(arn)
        try:
            resp = self._ecs.describe_services(cluster=cluster, services=[service])
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("describe ECS service", arn, str(e)) from e

        services = resp.get("services", [])
        deployments = services[0].get("deployments", []) if services else []
        if not deployments:
            raise CollaboratorError("describe ECS service", arn, "service has no deployments")
        return max(d["updatedAt"] for d in deployments)

    def force_update(self, app: str, env: str, workload: str) -> None:
        arn = self.service_arn(app, env, workload)
        cluster, service = cluster_and_service_from_arn(arn)
        logger.info(f"Forcing a new deployment of {service} in cluster {cluster}")
        try:
            self._ecs.update_service(cluster=cluster, service=service, forceNewDeployment=True)
            if self._wait:
                self._ecs.get_waiter("services_stable").wait(cluster=cluster, services=[service])
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("force update ECS service", arn, str(e)) from e
