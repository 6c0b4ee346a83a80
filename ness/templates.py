"""
Stack descriptors and CloudFormation template (de)serialization.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .ids import StackNaming


@dataclass(frozen=True)
class StackDescriptor:
    """Everything needed to deploy one stack."""
    stack_name: str
    parameters: Mapping[str, Optional[str]] = field(default_factory=dict)
    template: Dict[str, Any] = field(default_factory=dict)


class _CloudFormationLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form intrinsic functions."""


def _construct_intrinsic(loader, tag_suffix, node):
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "Condition":
        return {"Condition": value}
    if tag_suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {f"Fn::{tag_suffix}": value}


_CloudFormationLoader.add_multi_constructor("!", _construct_intrinsic)
# AWSTemplateFormatVersion must stay a string
_CloudFormationLoader.add_constructor("tag:yaml.org,2002:timestamp", yaml.SafeLoader.construct_yaml_str)


def deserialize(text: str) -> Dict[str, Any]:
    """
    Parse a CloudFormation YAML (or JSON) template.

    Raises:
        ConfigurationError: If the template is not a mapping
    """
    template = yaml.load(text, Loader=_CloudFormationLoader)
    if not isinstance(template, dict):
        raise ConfigurationError("CloudFormation template must be a mapping")
    return template


def to_yaml(template: Dict[str, Any]) -> str:
    """Serialize a template back to long-form YAML for the CloudFormation API."""
    return yaml.safe_dump(template, sort_keys=False, default_flow_style=False)


class TemplateResolver:
    """
    Builds StackDescriptors from <templates_dir>/<kind>.yaml.

    Templates are produced by the packaging step; this class only loads them and
    pairs them with the stack name and parameters.
    """

    def __init__(self, templates_dir: Path, naming: StackNaming):
        self.templates_dir = Path(templates_dir)
        self.naming = naming

    def template_path(self, kind: str) -> Path:
        return self.templates_dir / f"{kind}.yaml"

    def get_stack(self, kind: str, parameters: Mapping[str, Optional[str]]) -> StackDescriptor:
        path = self.template_path(kind)
        if not path.exists():
            raise ConfigurationError(f"No template for the {kind} stack at {path}")

        return StackDescriptor(
            stack_name=self.naming.name(kind),
            parameters=dict(parameters),
            template=deserialize(path.read_text(encoding="utf-8")),
        )
