"""
Container image build and push to ECR through the docker CLI.
"""

import base64
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CollaboratorError

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"digest: (sha256:[0-9a-f]{64})")


@dataclass(frozen=True)
class DockerBuildArgs:
    context: str
    repo_uri: str
    tags: Tuple[str, ...] = ("latest",)
    dockerfile: Optional[str] = None


def parse_push_digest(output: str) -> Optional[str]:
    """Extract the image digest from `docker push` output."""
    match = _DIGEST_RE.search(output)
    return match.group(1) if match else None


class DockerECRPusher:
    """Builds an image from a local context and pushes it to an ECR repository."""

    def __init__(self, session):
        self._ecr = session.client("ecr")

    def _login(self, repo_uri: str) -> None:
        try:
            resp = self._ecr.get_authorization_token()
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("get ECR authorization token", repo_uri, str(e)) from e

        auth = resp["authorizationData"][0]
        username, password = base64.b64decode(auth["authorizationToken"]).decode().split(":", 1)
        self._docker(
            ["docker", "login", "--username", username, "--password-stdin", auth["proxyEndpoint"]],
            "log in to registry", repo_uri, input_=password,
        )

    def _docker(self, cmd: List[str], operation: str, resource: str, input_: Optional[str] = None) -> str:
        try:
            proc = subprocess.run(cmd, input=input_, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise CollaboratorError(operation, resource, (e.stderr or "").strip()[-500:]) from e
        except FileNotFoundError as e:
            raise CollaboratorError(operation, resource, "docker executable not found") from e
        return proc.stdout

    def build_and_push(self, args: DockerBuildArgs) -> str:
        """
        Build, tag and push an image.

        Args:
            args: Build context, target repository and tags

        Returns:
            The pushed image digest

        Raises:
            CollaboratorError: If any docker or ECR step fails
        """
        build_cmd = ["docker", "build"]
        for tag in args.tags:
            build_cmd += ["-t", f"{args.repo_uri}:{tag}"]
        if args.dockerfile:
            build_cmd += ["-f", args.dockerfile]
        build_cmd.append(args.context)

        logger.info(f"Building container image for {args.repo_uri}")
        self._docker(build_cmd, "build container image", args.repo_uri)
        self._login(args.repo_uri)

        digest = None
        for tag in args.tags:
            output = self._docker(["docker", "push", f"{args.repo_uri}:{tag}"], "push container image", args.repo_uri)
            digest = parse_push_digest(output) or digest

        if not digest:
            raise CollaboratorError("push container image", args.repo_uri, "no digest in docker push output")
        logger.info(f"Pushed {args.repo_uri}@{digest}")
        return digest
