"""
Template overrides: user YAML patches layered onto a generated template.

A patch file is a list of operations:

    - op: add
      path: /Resources/TaskDefinition/Properties/ContainerDefinitions/0/Ulimits/-
      value:
        Name: nofile
        SoftLimit: 1024
        HardLimit: 2048

`path` is a JSON pointer (`~1` escapes "/", `~0` escapes "~", `-` appends
to a list). Operations are applied in order.
"""

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple, Union

import yaml

from ..errors import InvalidManifestError, TemplateOverrideError
from .addons import load_cfn_yaml
from .base import StackConfiguration, dump_template

SUPPORTED_OPS = ("add", "remove", "replace")
PATCHES_FILE = Path("overrides") / "cfn.patches.yml"


@dataclass(frozen=True)
class PatchOperation:
    op: str
    path: str
    value: Any = None


def load_patches(text: str, source: str = "<string>") -> Tuple[PatchOperation, ...]:
    """
    Parse a patch document.

    Raises:
        InvalidManifestError: If the document is not a list of valid operations
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidManifestError(source, str(e)) from e
    if data is None:
        return ()
    if not isinstance(data, list):
        raise InvalidManifestError(source, "override patches must be a list")

    patches = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict) or item.get("op") not in SUPPORTED_OPS or not isinstance(item.get("path"), str):
            raise InvalidManifestError(source, f"patch [{idx}] needs an op in {SUPPORTED_OPS} and a path")
        if item["op"] != "remove" and "value" not in item:
            raise InvalidManifestError(source, f'patch [{idx}] "{item["op"]}" needs a value')
        patches.append(PatchOperation(op=item["op"], path=item["path"], value=item.get("value")))
    return tuple(patches)


def load_patches_file(workload_dir: Path) -> Tuple[PatchOperation, ...]:
    path = workload_dir / PATCHES_FILE
    if not path.is_file():
        return ()
    return load_patches(path.read_text(), str(path))


def _pointer_tokens(path: str) -> List[str]:
    if not path.startswith("/") or path == "/":
        raise ValueError("path must be a JSON pointer below the template root")
    return [t.replace("~1", "/").replace("~0", "~") for t in path[1:].split("/")]


def _list_index(token: str, length: int, allow_end: bool) -> int:
    if not token.isdigit():
        raise ValueError(f'"{token}" is not a list index')
    idx = int(token)
    limit = length if allow_end else length - 1
    if idx > limit:
        raise ValueError(f"index {idx} is out of range")
    return idx


def _apply(doc: Dict[str, Any], patch: PatchOperation) -> None:
    tokens = _pointer_tokens(patch.path)
    node: Union[Dict[str, Any], List[Any]] = doc
    for token in tokens[:-1]:
        if isinstance(node, dict):
            if token not in node:
                raise ValueError(f'key "{token}" does not exist')
            node = node[token]
        elif isinstance(node, list):
            node = node[_list_index(token, len(node), allow_end=False)]
        else:
            raise ValueError(f'cannot descend into a scalar at "{token}"')

    last = tokens[-1]
    value = copy.deepcopy(patch.value)
    if isinstance(node, dict):
        if patch.op != "add" and last not in node:
            raise ValueError(f'key "{last}" does not exist')
        if patch.op == "remove":
            del node[last]
        else:
            node[last] = value
    elif isinstance(node, list):
        if patch.op == "add":
            if last == "-":
                node.append(value)
            else:
                node.insert(_list_index(last, len(node), allow_end=True), value)
        elif patch.op == "remove":
            node.pop(_list_index(last, len(node), allow_end=False))
        else:
            node[_list_index(last, len(node), allow_end=False)] = value
    else:
        raise ValueError(f'cannot {patch.op} "{last}" on a scalar')


def apply_patches(template: str, patches: Iterable[PatchOperation]) -> str:
    """
    Apply patches to a rendered template.

    Raises:
        TemplateOverrideError: Naming the first patch that cannot be applied
    """
    patches = list(patches)
    if not patches:
        return template

    doc = load_cfn_yaml(template)
    for idx, patch in enumerate(patches):
        try:
            _apply(doc, patch)
        except ValueError as e:
            raise TemplateOverrideError(idx, patch.path, str(e)) from e
    return dump_template(doc)


@dataclass(frozen=True)
class OverriddenStack(StackConfiguration):
    """A stack configuration whose template has user patches applied."""
    base: StackConfiguration
    patches: Tuple[PatchOperation, ...] = ()

    def stack_name(self) -> str:
        return self.base.stack_name()

    def template(self) -> str:
        return apply_patches(self.base.template(), self.patches)

    def parameters(self) -> List[Dict[str, str]]:
        return self.base.parameters()

    def tags(self) -> Dict[str, str]:
        return self.base.tags()


def wrap_with_template_overrider(conf: StackConfiguration, patches: Iterable[PatchOperation]) -> OverriddenStack:
    """
    Layer patches on top of a stack configuration.

    Wrapping an already wrapped configuration keeps a single wrapper over the
    original base with the patch lists concatenated, so wrapping with A then B
    is the same as wrapping once with A + B.
    """
    patches = tuple(patches)
    if isinstance(conf, OverriddenStack):
        return OverriddenStack(base=conf.base, patches=conf.patches + patches)
    return OverriddenStack(base=conf, patches=patches)
