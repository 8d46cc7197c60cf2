"""
Deployment journal in NDJSON format.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from .state import get_deployment_dir

LOG_FILE = "logs.ndjson"


class EventTypes:
    INIT = "INIT"
    REGION_CHECKED = "REGION_CHECKED"
    VALIDATED = "VALIDATED"
    ARTIFACTS_UPLOADED = "ARTIFACTS_UPLOADED"
    STACK_DEPLOY_START = "STACK_DEPLOY_START"
    STACK_DEPLOYED = "STACK_DEPLOYED"
    NO_CHANGES = "NO_CHANGES"
    RECOMMENDATIONS = "RECOMMENDATIONS"
    ERROR = "ERROR"


# Status reached once the given event is the latest one
STATUS_BY_EVENT = {
    EventTypes.INIT: "queued",
    EventTypes.REGION_CHECKED: "validating",
    EventTypes.VALIDATED: "uploading",
    EventTypes.ARTIFACTS_UPLOADED: "uploaded",
    EventTypes.STACK_DEPLOY_START: "deploying",
    EventTypes.STACK_DEPLOYED: "deployed",
    EventTypes.NO_CHANGES: "unchanged",
    EventTypes.RECOMMENDATIONS: "deployed",
    EventTypes.ERROR: "failed",
}


def emit_event(deployment_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """
    Append an event to the deployment's journal.

    Args:
        deployment_id: Deployment ID
        event_type: One of EventTypes
        data: JSON-serializable event payload
    """
    event = {"ts": datetime.now().isoformat(), "type": event_type, "data": data}
    with open(get_deployment_dir(deployment_id) / LOG_FILE, "a") as f:
        f.write(json.dumps(event, default=str) + "\n")
        f.flush()


def read_events(deployment_id: str) -> List[Dict[str, Any]]:
    """Events in the order they were written. Malformed lines are skipped."""
    path = get_deployment_dir(deployment_id) / LOG_FILE
    if not path.exists():
        return []

    events = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return events


def get_last_event(deployment_id: str) -> Optional[Dict[str, Any]]:
    events = read_events(deployment_id)
    return events[-1] if events else None


def get_status_from_events(deployment_id: str) -> str:
    last_event = get_last_event(deployment_id)
    if not last_event:
        return "unknown"
    return STATUS_BY_EVENT.get(last_event.get("type", ""), "unknown")
