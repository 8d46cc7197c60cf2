"""
Thin boto3 adapters for the AWS services a deploy talks to.

Every adapter takes an explicit boto3 Session; nothing here creates
process-wide clients.
"""

from .acm import ACM
from .cloudformation import CloudFormation
from .ecr import DockerBuildArgs, DockerECRPusher
from .ecs import ECSServiceUpdater
from .elbv2 import ELBV2, ImportedLoadBalancer, Listener
from .partitions import Partitions
from .s3 import S3

__all__ = [
    "ACM",
    "CloudFormation",
    "DockerBuildArgs",
    "DockerECRPusher",
    "ECSServiceUpdater",
    "ELBV2",
    "ImportedLoadBalancer",
    "Listener",
    "Partitions",
    "S3",
]
