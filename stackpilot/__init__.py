"""
stackpilot - Manifest-driven workload deployments onto AWS CloudFormation.

This package validates workload manifests against their target environment,
assembles CloudFormation stack configurations, uploads the supporting
artifacts and deploys the resulting stacks.
"""

__version__ = "0.1.0"
