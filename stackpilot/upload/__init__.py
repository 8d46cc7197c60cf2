"""
Artifact uploads that precede a stack deploy.
"""

from .customresource import CustomResource, PackageTemplateReader, read_custom_resources, upload_custom_resources
from .pipeline import UploadArtifactsOutput, upload_artifacts

__all__ = [
    "CustomResource",
    "PackageTemplateReader",
    "UploadArtifactsOutput",
    "read_custom_resources",
    "upload_artifacts",
    "upload_custom_resources",
]
