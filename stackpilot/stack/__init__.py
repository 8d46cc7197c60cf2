"""
Stack configuration assembly.
"""

from .addons import Addons, parse_addons
from .base import RenderedStack, StackConfiguration, WorkloadStack, WorkloadStackConfig
from .override import OverriddenStack, PatchOperation, load_patches, wrap_with_template_overrider
from .workloads import (
    BackendServiceStack,
    LoadBalancedWebServiceStack,
    ScheduledJobStack,
    WorkerServiceStack,
)

__all__ = [
    "Addons",
    "BackendServiceStack",
    "LoadBalancedWebServiceStack",
    "OverriddenStack",
    "PatchOperation",
    "RenderedStack",
    "ScheduledJobStack",
    "StackConfiguration",
    "WorkerServiceStack",
    "WorkloadStack",
    "WorkloadStackConfig",
    "load_patches",
    "parse_addons",
    "wrap_with_template_overrider",
]
