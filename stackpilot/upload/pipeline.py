"""
Ordered, fail-fast artifact upload pipeline.

A pipeline is a list of (phase name, function) pairs. Each function fills in
part of an UploadArtifactsOutput. Phases run in order on a staged copy of the
output; the copy is kept only when the phase succeeds, so a failing phase
never leaves half-written results behind.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..errors import ConfigurationError, StackpilotError, UploadPhaseError

logger = logging.getLogger(__name__)

IMAGES_PHASE = "build and push container images"
S3_PHASE = "upload artifacts to S3"
CUSTOM_RESOURCES_PHASE = "upload custom resources"


@dataclass
class UploadArtifactsOutput:
    """References to everything a deploy uploaded. Never holds artifact bytes."""
    image_digests: Dict[str, str] = field(default_factory=dict)
    env_file_arn: Optional[str] = None
    addons_url: Optional[str] = None
    custom_resource_urls: Dict[str, str] = field(default_factory=dict)


UploadFunc = Callable[[UploadArtifactsOutput], None]
UploadPhase = Tuple[str, UploadFunc]


def upload_artifacts(phases: Sequence[UploadPhase]) -> UploadArtifactsOutput:
    """
    Run upload phases in order.

    Args:
        phases: (name, function) pairs; each function mutates the output it is given

    Returns:
        The combined output of every phase

    Raises:
        UploadPhaseError: If a phase fails; carries the output of the phases
            completed before it. Later phases are not run.
        ConfigurationError: Passed through unwrapped
    """
    out = UploadArtifactsOutput()
    for name, upload in phases:
        staged = copy.deepcopy(out)
        logger.debug(f"Upload phase: {name}")
        try:
            upload(staged)
        except ConfigurationError:
            raise
        except (StackpilotError, OSError) as e:
            raise UploadPhaseError(name, out, e) from e
        out = staged
    return out
