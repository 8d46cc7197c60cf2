"""
Tagging utilities for consistent stack and resource tagging across deployments.
"""

from typing import Dict, List, Optional

APP_TAG = "stackpilot-application"
ENV_TAG = "stackpilot-environment"
WORKLOAD_TAG = "stackpilot-service"


def base_tags(app: str, env: str, workload: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Generate the tags applied to a workload stack.

    Args:
        app: Application name
        env: Environment name
        workload: Workload name
        extra: Additional user tags; reserved keys cannot be overridden

    Returns:
        Dictionary of tags
    """
    tags = dict(extra or {})
    tags.update({
        APP_TAG: app,
        ENV_TAG: env,
        WORKLOAD_TAG: workload,
    })
    return tags


def parse_user_tags(tag_strings: List[str]) -> Dict[str, str]:
    """
    Parse user-provided tag strings in format "key=value".

    Raises:
        ValueError: If tag string format is invalid
    """
    tags = {}

    for tag_str in tag_strings:
        if "=" not in tag_str:
            raise ValueError(f"Invalid tag format: {tag_str}. Expected 'key=value'")

        key, value = tag_str.split("=", 1)
        if not key.strip() or not value.strip():
            raise ValueError(f"Invalid tag format: {tag_str}. Key and value must not be empty")

        tags[key.strip()] = value.strip()

    return tags


def to_cfn_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    """Convert a tag dict into the CloudFormation Key/Value list, sorted by key."""
    return [{"Key": k, "Value": tags[k]} for k in sorted(tags)]


def workload_tag_filters(app: str, env: str, workload: str) -> List[Dict[str, List[str]]]:
    """Tag filters for the Resource Groups Tagging API that select one workload's resources."""
    return [
        {"Key": APP_TAG, "Values": [app]},
        {"Key": ENV_TAG, "Values": [env]},
        {"Key": WORKLOAD_TAG, "Values": [workload]},
    ]
