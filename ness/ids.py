"""
Stack and changeset naming utilities.
"""

import json
import re
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import DEFAULT_STACK_PREFIX

STACK_KINDS = ("domain", "web", "alias", "support")
DEFAULT_BRANCH = "main"

_NON_ALPHANUMERIC = re.compile(r"[\W_]+", re.ASCII)


def clean(value: str) -> str:
    """
    Collapse every run of non-alphanumeric characters into a single '-'.

    Args:
        value: Raw project or branch name

    Returns:
        str: Name safe to embed in a CloudFormation stack name
    """
    return _NON_ALPHANUMERIC.sub("-", value)


def stack_name(kind: str, project: str, branch: Optional[str], prefix: str = DEFAULT_STACK_PREFIX) -> str:
    """
    Build the stable stack name for a stack kind in a project on a branch.

    The support stack is shared by every project and branch in the account, so its
    name ignores both.

    Args:
        kind: One of "domain", "web", "alias" or "support"
        project: Project name (cleaned here)
        branch: Branch name, None or empty falls back to "main"
        prefix: Stack name prefix

    Returns:
        str: Stack name in format {prefix}-{kind}-{project}-{branch}

    Raises:
        ValueError: If kind is unknown
    """
    if kind not in STACK_KINDS:
        raise ValueError(f"Unknown stack kind: {kind}")

    if kind == "support":
        return f"{prefix}-support"

    return f"{prefix}-{kind}-{clean(project)}-{clean(branch or DEFAULT_BRANCH)}"


def get_project_name(entry: str = ".") -> str:
    """
    Get the project name from package.json, falling back to the directory name.

    Args:
        entry: Project root
    """
    root = Path(entry).resolve()
    package_json = root / "package.json"

    if package_json.exists():
        try:
            with open(package_json, "r") as f:
                name = json.load(f).get("name")
            if name:
                return clean(name)
        except (OSError, ValueError, AttributeError):
            pass

    return clean(root.name)


def get_branch(entry: str = ".") -> str:
    """
    Get the current git branch, or "main" outside a repository.

    Args:
        entry: Project root
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=entry,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return DEFAULT_BRANCH

    branch = result.stdout.strip() if result.returncode == 0 else ""
    # Detached HEAD reports the literal "HEAD"
    if not branch or branch == "HEAD":
        return DEFAULT_BRANCH

    return clean(branch)


@dataclass(frozen=True)
class StackNaming:
    """Stack names for one project on one branch."""
    project: str
    branch: str = DEFAULT_BRANCH
    prefix: str = DEFAULT_STACK_PREFIX

    @classmethod
    def discover(cls, entry: str = ".", prefix: str = DEFAULT_STACK_PREFIX) -> "StackNaming":
        return cls(project=get_project_name(entry), branch=get_branch(entry), prefix=prefix)

    def name(self, kind: str) -> str:
        return stack_name(kind, self.project, self.branch, self.prefix)

    @property
    def base(self) -> str:
        """Identifier for local state shared by every stack of this project/branch."""
        return f"{self.prefix}-{clean(self.project)}-{clean(self.branch or DEFAULT_BRANCH)}"


def new_change_set_name(prefix: str = DEFAULT_STACK_PREFIX) -> tuple:
    """
    Generate a unique changeset name for one deploy attempt.

    Returns:
        tuple: (change_set_name, execution_id)
    """
    execution_id = str(uuid.uuid4())
    return f"{prefix}-{execution_id}", execution_id
