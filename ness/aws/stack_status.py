"""
Predicates over CloudFormation stack statuses.

See https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/using-cfn-describing-stacks.html
"""

from typing import Any, Dict, Optional

NOT_FOUND = "NOT_FOUND"


class StackStatus:
    """A stack's last observed status plus the provider's reason for it."""

    @classmethod
    def from_stack_description(cls, description: Dict[str, Any]) -> "StackStatus":
        name = description.get("StackStatus")
        if not name:
            raise ValueError("StackStatus must be provided")
        return cls(name, description.get("StackStatusReason"))

    @classmethod
    def not_found(cls) -> "StackStatus":
        return cls(NOT_FOUND)

    def __init__(self, name: str, reason: Optional[str] = None):
        self.name = name
        self.reason = reason

    @property
    def is_creation_failure(self) -> bool:
        return self.name in ("ROLLBACK_COMPLETE", "ROLLBACK_FAILED")

    @property
    def is_deleted(self) -> bool:
        return self.name.startswith("DELETE_")

    @property
    def is_failure(self) -> bool:
        return self.name.endswith("FAILED")

    @property
    def is_in_progress(self) -> bool:
        return self.name.endswith("_IN_PROGRESS")

    @property
    def is_not_found(self) -> bool:
        return self.name == NOT_FOUND

    @property
    def is_deploy_success(self) -> bool:
        return not self.is_not_found and self.name in ("CREATE_COMPLETE", "UPDATE_COMPLETE")

    @property
    def is_complete(self) -> bool:
        return self.name.endswith("_COMPLETE") and not self.is_deleted

    def __eq__(self, other) -> bool:
        if not isinstance(other, StackStatus):
            return NotImplemented
        return self.name == other.name and self.reason == other.reason

    def __repr__(self) -> str:
        return f"StackStatus({self.name!r}, {self.reason!r})"

    def __str__(self) -> str:
        return self.name + (f" ({self.reason})" if self.reason else "")
