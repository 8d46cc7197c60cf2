"""
boto3 sessions scoped to one deploy.
"""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..environment import Environment
from ..errors import CollaboratorError

logger = logging.getLogger(__name__)

SESSION_NAME = "stackpilot-deploy"


def default_session(profile: Optional[str] = None, region: Optional[str] = None) -> boto3.session.Session:
    return boto3.session.Session(profile_name=profile, region_name=region)


def env_session(base: boto3.session.Session, env: Environment) -> boto3.session.Session:
    """
    Session for the environment's account and region.

    Assumes the environment manager role when one is configured; otherwise
    reuses the base credentials in the environment's region.

    Raises:
        CollaboratorError: If the role cannot be assumed
    """
    if not env.manager_role_arn:
        return boto3.session.Session(profile_name=base.profile_name, region_name=env.region)

    logger.debug(f"Assuming role {env.manager_role_arn}")
    try:
        resp = base.client("sts").assume_role(RoleArn=env.manager_role_arn, RoleSessionName=SESSION_NAME)
    except (ClientError, BotoCoreError) as e:
        raise CollaboratorError("assume role", env.manager_role_arn, str(e)) from e

    creds = resp["Credentials"]
    return boto3.session.Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=env.region,
    )
