"""
Exception hierarchy for deployment orchestration.
"""

from typing import Optional


class NessError(Exception):
    """Base error for everything raised by ness."""


class ConfigurationError(NessError):
    """Raised for invalid or missing configuration (parameters, publish directory, settings)."""


class StackDeployError(NessError):
    """Raised when a stack fails to reach a successful deploy state."""

    def __init__(self, message: str, stack_name: str, status=None):
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status


class StackDeleteError(NessError):
    """Raised when a stack deletion ends in anything other than DELETE_COMPLETE."""

    def __init__(self, message: str, stack_name: str, status=None):
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status


class ChangeSetError(NessError):
    """Raised when a changeset cannot be computed."""

    def __init__(self, message: str, stack_name: str, change_set_name: str, reason: Optional[str] = None):
        super().__init__(message)
        self.stack_name = stack_name
        self.change_set_name = change_set_name
        self.reason = reason


class DnsValidationError(NessError):
    """Raised when DNS delegation for a custom domain cannot be confirmed."""


class DeploymentCancelled(NessError):
    """Raised out of a polling loop when the caller cancels the run."""
