"""
Per-deployment state on local disk.

Each deploy gets a directory under $STACKPILOT_HOME (default .stackpilot)
holding the request, the result and its event journal.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ids import is_valid_deployment_id

REQUEST_FILE = "request.json"
RESULT_FILE = "result.json"


def get_stackpilot_home() -> Path:
    return Path(os.environ.get("STACKPILOT_HOME", ".stackpilot")).resolve()


def get_deployment_dir(deployment_id: str) -> Path:
    """
    Directory of one deployment.

    Raises:
        ValueError: If the deployment ID is malformed
    """
    if not is_valid_deployment_id(deployment_id):
        raise ValueError(f"Invalid deployment ID: {deployment_id}")
    return get_stackpilot_home() / deployment_id


def create_deployment_dir(deployment_id: str) -> Path:
    deployment_dir = get_deployment_dir(deployment_id)
    deployment_dir.mkdir(parents=True, exist_ok=True)
    return deployment_dir


def write_request_json(deployment_id: str, app: str, env: str, workload: str, kind: str,
                       manifest_path: str) -> None:
    """
    Record what was asked for.

    Args:
        deployment_id: Deployment ID
        app: Application name
        env: Environment name
        workload: Workload name
        kind: Workload kind
        manifest_path: Manifest the deploy was started from
    """
    data = {
        "app": app,
        "environment": env,
        "workload": workload,
        "kind": kind,
        "manifest": manifest_path,
        "created_at": datetime.now().isoformat(),
    }
    with open(get_deployment_dir(deployment_id) / REQUEST_FILE, "w") as f:
        json.dump(data, f, indent=2)


def read_request_json(deployment_id: str) -> Dict[str, Any]:
    """
    Raises:
        FileNotFoundError: If the deployment does not exist
    """
    path = get_deployment_dir(deployment_id) / REQUEST_FILE
    if not path.exists():
        raise FileNotFoundError(f"Deployment {deployment_id} not found")
    with open(path, "r") as f:
        return json.load(f)


def write_result_json(deployment_id: str, result: Dict[str, Any]) -> None:
    with open(get_deployment_dir(deployment_id) / RESULT_FILE, "w") as f:
        json.dump(result, f, indent=2)


def read_result_json(deployment_id: str) -> Optional[Dict[str, Any]]:
    path = get_deployment_dir(deployment_id) / RESULT_FILE
    if not path.exists():
        return None
    with open(path, "r") as f:
        return json.load(f)


def list_deployments() -> List[str]:
    """Deployment IDs, most recent first."""
    home = get_stackpilot_home()
    if not home.exists():
        return []
    ids = [p.name for p in home.iterdir() if p.is_dir() and is_valid_deployment_id(p.name)]
    return sorted(ids, reverse=True)

