"""
Custom resource Lambda bundles shipped with stackpilot.

Each workload kind uses a fixed set of custom resources. Their handlers live
in the package's templates/custom-resources directory and are zipped and
uploaded to the artifact bucket before a deploy.
"""

import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass
from importlib import resources
from typing import Dict, List, Tuple

from ..errors import CustomResourceBundleError
from ..manifest import WorkloadKind

logger = logging.getLogger(__name__)

CUSTOM_RESOURCES_DIR = "custom-resources"
SHARED_SCRIPT = "cfn-response.js"

ENV_CONTROLLER = "EnvControllerFunction"
DYNAMIC_DESIRED_COUNT = "DynamicDesiredCountFunction"
RULE_PRIORITY = "RulePriorityFunction"
BACKLOG_PER_TASK = "BacklogPerTaskCalculatorFunction"

SCRIPTS = {
    ENV_CONTROLLER: "env-controller.js",
    DYNAMIC_DESIRED_COUNT: "desired-count-delegation.js",
    RULE_PRIORITY: "alb-rule-priority-generator.js",
    BACKLOG_PER_TASK: "backlog-per-task-calculator.js",
}

BUNDLES: Dict[WorkloadKind, Tuple[str, ...]] = {
    WorkloadKind.BACKEND_SERVICE: (DYNAMIC_DESIRED_COUNT, ENV_CONTROLLER, RULE_PRIORITY),
    WorkloadKind.LOAD_BALANCED_WEB_SERVICE: (DYNAMIC_DESIRED_COUNT, ENV_CONTROLLER, RULE_PRIORITY),
    WorkloadKind.WORKER_SERVICE: (BACKLOG_PER_TASK, DYNAMIC_DESIRED_COUNT, ENV_CONTROLLER),
    WorkloadKind.SCHEDULED_JOB: (ENV_CONTROLLER,),
}

# Fixed timestamp so identical sources always produce identical archives.
_ZIP_DATE = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class CustomResource:
    name: str
    files: Tuple[Tuple[str, bytes], ...]

    def zip(self) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for filename, content in sorted(self.files):
                info = zipfile.ZipInfo(filename, date_time=_ZIP_DATE)
                info.external_attr = 0o644 << 16
                info.compress_type = zipfile.ZIP_DEFLATED
                zf.writestr(info, content)
        return buf.getvalue()

    def artifact_key(self) -> str:
        digest = hashlib.sha256(self.zip()).hexdigest()
        return f"manual/scripts/custom-resources/{self.name.lower()}/{digest}.zip"


class PackageTemplateReader:
    """Reads files from the installed stackpilot/templates directory."""

    def __init__(self, package: str = "stackpilot"):
        self._root = resources.files(package) / "templates"

    def read(self, path: str) -> bytes:
        node = self._root
        for part in path.split("/"):
            node = node / part
        if not node.is_file():
            raise FileNotFoundError(f"templates/{path}")
        return node.read_bytes()


def read_custom_resources(reader, kind: WorkloadKind) -> List[CustomResource]:
    """
    Read the custom resource bundle of a workload kind.

    Args:
        reader: Object with read(path) -> bytes
        kind: Workload kind whose bundle to read

    Raises:
        CustomResourceBundleError: If the kind has no bundle or a script is missing
    """
    names = BUNDLES.get(kind)
    if names is None:
        raise CustomResourceBundleError(kind.value, CUSTOM_RESOURCES_DIR, "no bundle for this workload kind")

    def read(path: str) -> bytes:
        try:
            return reader.read(path)
        except OSError as e:
            raise CustomResourceBundleError(kind.value, path, str(e)) from e

    shared = read(f"{CUSTOM_RESOURCES_DIR}/{SHARED_SCRIPT}")
    bundle = []
    for name in names:
        content = read(f"{CUSTOM_RESOURCES_DIR}/{SCRIPTS[name]}")
        bundle.append(CustomResource(name=name, files=(("index.js", content), (SHARED_SCRIPT, shared))))
    return bundle


def upload_custom_resources(bundle: List[CustomResource], uploader, bucket: str) -> Dict[str, str]:
    """Upload each custom resource zip and return its URL keyed by function name."""
    urls = {}
    for cr in bundle:
        urls[cr.name] = uploader.upload(bucket, cr.artifact_key(), cr.zip())
        logger.debug(f"Uploaded custom resource {cr.name}")
    return urls
