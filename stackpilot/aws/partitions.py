"""
Partition and region availability lookups from botocore's endpoint data.
"""

import boto3
from botocore.exceptions import BotoCoreError

from ..errors import CollaboratorError


class Partitions:
    def __init__(self, session=None):
        self._session = session or boto3.session.Session()

    def is_available_in_region(self, service: str, region: str) -> bool:
        """
        Check whether an AWS service family has an endpoint in a region.

        Args:
            service: Endpoint prefix, e.g. "ecs"
            region: Region name

        Raises:
            CollaboratorError: If the region's partition cannot be determined
        """
        try:
            partition = self._session.get_partition_for_region(region)
            regions = self._session.get_available_regions(service, partition_name=partition)
        except (BotoCoreError, ValueError) as e:
            raise CollaboratorError("find the partition for region", region, str(e)) from e
        return region in regions

    def partition_for_region(self, region: str) -> str:
        """Partition name ("aws", "aws-cn", ...) a region belongs to."""
        try:
            return self._session.get_partition_for_region(region)
        except (BotoCoreError, ValueError) as e:
            raise CollaboratorError("find the partition for region", region, str(e)) from e
