"""
AWS integration: CloudFormation stack lifecycle and resource discovery.
"""

from .stack_status import StackStatus
from .cloudformation import CloudFormationStack, ChangeSetManager, TemplateParameters
from .stacks import StackLifecycleManager
from .discovery import HostedZone, ResourceDiscovery, resolve_txt_records
from .session import create_session

__all__ = [
    "StackStatus",
    "CloudFormationStack",
    "ChangeSetManager",
    "TemplateParameters",
    "StackLifecycleManager",
    "HostedZone",
    "ResourceDiscovery",
    "resolve_txt_records",
    "create_session",
]
