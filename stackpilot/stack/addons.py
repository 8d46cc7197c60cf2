"""
Workload add-ons: extra CloudFormation templates deployed as a nested stack.

Every *.yml / *.yaml file in a workload's `addons/` directory is merged into
one template. Short-form intrinsic functions (`!Ref`, `!GetAtt`, `!Sub` ...)
are read into their long form so the merged template can be dumped as plain
YAML.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..errors import AddonsMergeError, InvalidManifestError

MERGED_SECTIONS = ("Parameters", "Conditions", "Mappings", "Resources", "Outputs")
RESERVED_PARAMETERS = ("App", "Env", "Name")


class CFNLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form tags."""
    pass


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Dict[str, Any]:
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "GetAtt" and isinstance(value, str):
        return {"Fn::GetAtt": value.split(".", 1)}
    if tag_suffix == "Condition":
        return {"Condition": value}
    return {f"Fn::{tag_suffix}": value}


CFNLoader.add_multi_constructor("!", _construct_intrinsic)


def load_cfn_yaml(text: str) -> Any:
    return yaml.load(text, Loader=CFNLoader)


@dataclass(frozen=True)
class Addons:
    """A merged add-ons template."""
    template: Dict[str, Any]

    def render(self) -> str:
        return yaml.safe_dump(self.template, sort_keys=False, default_flow_style=False, width=1000)

    def artifact_key(self, workload: str) -> str:
        digest = hashlib.sha256(self.render().encode()).hexdigest()
        return f"manual/addons/{workload}/{digest}.yml"


def merge_addon_templates(documents: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge add-on templates, keyed by file name, into one template.

    Identical duplicate logical IDs are allowed; conflicting ones are not.

    Raises:
        AddonsMergeError: If two files define the same logical ID differently
    """
    merged: Dict[str, Any] = {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Parameters": {name: {"Type": "String"} for name in RESERVED_PARAMETERS},
    }
    owners: Dict[str, Dict[str, str]] = {section: {} for section in MERGED_SECTIONS}

    for filename in sorted(documents):
        doc = documents[filename] or {}
        for section in MERGED_SECTIONS:
            for logical_id, body in (doc.get(section) or {}).items():
                target = merged.setdefault(section, {})
                if logical_id in target and target[logical_id] != body:
                    if section == "Parameters" and logical_id in RESERVED_PARAMETERS:
                        continue
                    raise AddonsMergeError(section, logical_id, [owners[section].get(logical_id, "<reserved>"), filename])
                target[logical_id] = body
                owners[section].setdefault(logical_id, filename)
    return merged


def parse_addons(workload_dir: Path) -> Optional[Addons]:
    """
    Read and merge a workload's add-on templates.

    Args:
        workload_dir: Directory holding the workload's manifest

    Returns:
        Addons, or None when the workload has no addons directory or templates
    """
    addons_dir = workload_dir / "addons"
    if not addons_dir.is_dir():
        return None

    files: List[Path] = sorted(p for p in addons_dir.iterdir() if p.suffix in (".yml", ".yaml"))
    if not files:
        return None

    documents: Dict[str, Dict[str, Any]] = {}
    for path in files:
        try:
            doc = load_cfn_yaml(path.read_text())
        except yaml.YAMLError as e:
            raise InvalidManifestError(str(path), str(e)) from e
        if doc is not None and not isinstance(doc, dict):
            raise InvalidManifestError(str(path), "add-on template must be a mapping")
        documents[path.name] = doc or {}

    return Addons(template=merge_addon_templates(documents))
