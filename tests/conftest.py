"""
Shared fixtures for ness tests.
"""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from ness.config import NessConfig
from ness.ids import StackNaming
from ness.templates import StackDescriptor


def not_found_error(stack_name="ness-web-site-main"):
    return ClientError(
        {"Error": {"Code": "ValidationError", "Message": f"Stack with id {stack_name} does not exist"}},
        "DescribeStacks",
    )


def stack_description(status, outputs=None, parameters=None, reason=None):
    description = {"StackName": "stack", "StackStatus": status}
    if reason:
        description["StackStatusReason"] = reason
    if outputs:
        description["Outputs"] = [{"OutputKey": k, "OutputValue": v} for k, v in outputs.items()]
    if parameters:
        description["Parameters"] = [{"ParameterKey": k, "ParameterValue": "x"} for k in parameters]
    return {"Stacks": [description]}


@pytest.fixture
def fast_config():
    return NessConfig(poll_interval=0, dns_poll_interval=0, stack_timeout=5, changeset_timeout=5)


@pytest.fixture
def naming():
    return StackNaming(project="site", branch="main")


@pytest.fixture
def resolver(naming):
    """TemplateResolver stand-in that builds empty-template descriptors."""
    mock = Mock()
    mock.naming = naming
    mock.get_stack.side_effect = lambda kind, params: StackDescriptor(naming.name(kind), dict(params), {})
    return mock
