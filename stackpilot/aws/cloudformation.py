"""
CloudFormation stack execution engine.

Creates or updates a workload stack from a StackConfiguration and waits for
the operation to finish unless asked to detach.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..errors import CollaboratorError, EmptyChangeSetError, StackExecutionError
from ..tags import to_cfn_tags

logger = logging.getLogger(__name__)

# Templates larger than this must be passed by S3 URL.
MAX_TEMPLATE_BODY_BYTES = 51200
CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]
NO_UPDATES_MESSAGE = "No updates are to be performed"
IN_PROGRESS_SUFFIX = "_IN_PROGRESS"


class CloudFormation:
    """Deploys stacks with an env-scoped CloudFormation client."""

    def __init__(self, session, uploader=None):
        """
        Args:
            session: boto3 Session for the target environment
            uploader: Object with upload(bucket, key, body) -> url, used for
                templates too large to send inline
        """
        self._client = session.client("cloudformation")
        self._uploader = uploader

    def describe_stack(self, stack_name: str) -> Optional[Dict[str, Any]]:
        """Return the stack description, or None when the stack does not exist."""
        try:
            resp = self._client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in e.response.get("Error", {}).get("Message", ""):
                return None
            raise CollaboratorError("describe stack", stack_name, str(e)) from e
        except BotoCoreError as e:
            raise CollaboratorError("describe stack", stack_name, str(e)) from e
        stacks = resp.get("Stacks", [])
        return stacks[0] if stacks else None

    def failure_reasons(self, stack_name: str) -> List[str]:
        """Reasons attached to the stack's FAILED resource events, newest first."""
        reasons = []
        try:
            paginator = self._client.get_paginator("describe_stack_events")
            for page in paginator.paginate(StackName=stack_name):
                for event in page.get("StackEvents", []):
                    if "FAILED" in event.get("ResourceStatus", "") and event.get("ResourceStatusReason"):
                        reasons.append(f"{event.get('LogicalResourceId')}: {event['ResourceStatusReason']}")
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not read events of stack {stack_name}: {e}")
        return reasons

    def _template_source(self, conf, bucket: Optional[str]) -> Dict[str, str]:
        body = conf.template()
        if len(body.encode()) <= MAX_TEMPLATE_BODY_BYTES:
            return {"TemplateBody": body}
        if self._uploader is None or not bucket:
            raise StackExecutionError("deploy stack", conf.stack_name(),
                                      "template exceeds the inline size limit and no artifact bucket is configured")
        digest = hashlib.sha256(body.encode()).hexdigest()
        url = self._uploader.upload(bucket, f"manual/templates/{conf.stack_name()}/{digest}.yml", body.encode())
        return {"TemplateURL": url}

    def _wait(self, waiter_name: str, stack_name: str) -> None:
        try:
            self._client.get_waiter(waiter_name).wait(
                StackName=stack_name,
                WaiterConfig={"Delay": 10, "MaxAttempts": 360},
            )
        except WaiterError as e:
            reasons = self.failure_reasons(stack_name)
            detail = "; ".join(reasons[:5]) if reasons else str(e)
            raise StackExecutionError("wait for stack", stack_name, detail) from e

    def _delete(self, stack_name: str, role_arn: Optional[str]) -> None:
        logger.info(f"Deleting stack {stack_name} left in ROLLBACK_COMPLETE")
        kwargs: Dict[str, Any] = {"StackName": stack_name}
        if role_arn:
            kwargs["RoleARN"] = role_arn
        try:
            self._client.delete_stack(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise StackExecutionError("delete stack", stack_name, str(e)) from e
        self._wait("stack_delete_complete", stack_name)

    def deploy_stack(self, conf, bucket: Optional[str] = None, role_arn: Optional[str] = None,
                     detach: bool = False, disable_rollback: bool = False) -> None:
        """
        Create or update the stack described by a StackConfiguration.

        Args:
            conf: StackConfiguration to deploy
            bucket: Artifact bucket used for oversized templates
            role_arn: CloudFormation execution role of the environment
            detach: Return once the operation has started
            disable_rollback: Keep failed resources for debugging

        Raises:
            EmptyChangeSetError: If the stack is already up to date
            StackExecutionError: If CloudFormation rejects or fails the operation
        """
        stack_name = conf.stack_name()
        existing = self.describe_stack(stack_name)
        status = existing.get("StackStatus", "") if existing else ""
        if status.endswith(IN_PROGRESS_SUFFIX):
            raise StackExecutionError("deploy stack", stack_name, f"stack is busy ({status})")
        if status == "ROLLBACK_COMPLETE":
            self._delete(stack_name, role_arn)
            existing = None

        kwargs: Dict[str, Any] = {
            "StackName": stack_name,
            "Parameters": conf.parameters(),
            "Tags": to_cfn_tags(conf.tags()),
            "Capabilities": CAPABILITIES,
            **self._template_source(conf, bucket),
        }
        if role_arn:
            kwargs["RoleARN"] = role_arn

        try:
            if existing is None:
                logger.info(f"Creating stack {stack_name}")
                self._client.create_stack(DisableRollback=disable_rollback, **kwargs)
                waiter = "stack_create_complete"
            else:
                logger.info(f"Updating stack {stack_name}")
                self._client.update_stack(DisableRollback=disable_rollback, **kwargs)
                waiter = "stack_update_complete"
        except ClientError as e:
            if NO_UPDATES_MESSAGE in e.response.get("Error", {}).get("Message", ""):
                raise EmptyChangeSetError(stack_name) from e
            raise StackExecutionError("deploy stack", stack_name, str(e)) from e
        except BotoCoreError as e:
            raise StackExecutionError("deploy stack", stack_name, str(e)) from e

        if detach:
            logger.info(f"Detached from stack {stack_name} operation")
            return
        self._wait(waiter, stack_name)
        logger.info(f"Stack {stack_name} deployed")
