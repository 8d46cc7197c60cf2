"""
S3 uploads for deployment artifacts.
"""

import logging
from typing import Tuple
from urllib.parse import urlparse

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CollaboratorError

logger = logging.getLogger(__name__)


def object_url(bucket: str, key: str, region: str) -> str:
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def object_arn(bucket: str, key: str, partition: str = "aws") -> str:
    return f"arn:{partition}:s3:::{bucket}/{key}"


def parse_object_url(url: str) -> Tuple[str, str]:
    """
    Split a virtual-hosted-style object URL into bucket and key.

    Raises:
        ValueError: If the URL is not an S3 object URL
    """
    parsed = urlparse(url)
    host = parsed.netloc
    if ".s3." not in host and not host.endswith(".s3.amazonaws.com"):
        raise ValueError(f"not an S3 object URL: {url}")
    bucket = host.split(".s3", 1)[0]
    key = parsed.path.lstrip("/")
    if not bucket or not key:
        raise ValueError(f"not an S3 object URL: {url}")
    return bucket, key


class S3:
    def __init__(self, session):
        self._client = session.client("s3")
        self._region = session.region_name or "us-east-1"

    def upload(self, bucket: str, key: str, body: bytes) -> str:
        """
        Put an object and return its URL.

        Raises:
            CollaboratorError: If the upload fails
        """
        try:
            self._client.put_object(Bucket=bucket, Key=key, Body=body, ACL="bucket-owner-full-control")
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("upload object", f"s3://{bucket}/{key}", str(e)) from e
        logger.debug(f"Uploaded s3://{bucket}/{key} ({len(body)} bytes)")
        return object_url(bucket, key, self._region)
