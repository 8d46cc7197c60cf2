"""
Deployment ID generation utilities.
"""

import random
import re
import string
from datetime import datetime
from typing import Optional

_ID_RE = re.compile(r"^d-\d{8}-\d{6}-[a-z0-9]{4}$")


def new_deployment_id(now: Optional[datetime] = None) -> str:
    """
    Generate a new deployment ID in format: d-YYYYMMDD-hhmmss-XXXX

    Args:
        now: Timestamp to embed; defaults to the current local time
    """
    now = now or datetime.now()
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"d-{now:%Y%m%d-%H%M%S}-{suffix}"


def is_valid_deployment_id(deployment_id: str) -> bool:
    return bool(_ID_RE.match(deployment_id))
