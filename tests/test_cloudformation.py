"""
Tests for stack status predicates, template parameters and changesets.
"""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from ness.aws.cloudformation import (
    ChangeSetManager,
    CloudFormationStack,
    TemplateParameters,
    change_set_has_no_changes,
    stabilize_stack,
    wait_for_stack_deploy,
)
from ness.aws.stack_status import StackStatus
from ness.errors import ChangeSetError, ConfigurationError, DeploymentCancelled, StackDeployError
from ness.polling import CancelToken

from conftest import not_found_error, stack_description


class TestStackStatus:
    """Test status predicates."""

    def test_creation_failure(self):
        assert StackStatus("ROLLBACK_COMPLETE").is_creation_failure
        assert StackStatus("ROLLBACK_FAILED").is_creation_failure
        assert not StackStatus("UPDATE_ROLLBACK_COMPLETE").is_creation_failure

    def test_deleted_and_failure(self):
        assert StackStatus("DELETE_COMPLETE").is_deleted
        assert StackStatus("DELETE_FAILED").is_deleted
        assert StackStatus("DELETE_FAILED").is_failure
        assert not StackStatus("CREATE_COMPLETE").is_failure

    def test_in_progress(self):
        assert StackStatus("UPDATE_COMPLETE_CLEANUP_IN_PROGRESS").is_in_progress
        assert StackStatus("REVIEW_IN_PROGRESS").is_in_progress
        assert not StackStatus("CREATE_COMPLETE").is_in_progress

    def test_deploy_success(self):
        assert StackStatus("CREATE_COMPLETE").is_deploy_success
        assert StackStatus("UPDATE_COMPLETE").is_deploy_success
        assert not StackStatus("UPDATE_ROLLBACK_COMPLETE").is_deploy_success
        assert not StackStatus.not_found().is_deploy_success
        assert StackStatus.not_found().is_not_found

    def test_from_description_requires_status(self):
        with pytest.raises(ValueError, match="StackStatus must be provided"):
            StackStatus.from_stack_description({})

    def test_str_includes_reason(self):
        assert str(StackStatus("DELETE_FAILED", "bucket not empty")) == "DELETE_FAILED (bucket not empty)"
        assert str(StackStatus("CREATE_COMPLETE")) == "CREATE_COMPLETE"


class TestCloudFormationStack:
    """Test stack lookup."""

    def test_lookup_not_found(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = not_found_error()

        stack = CloudFormationStack.lookup(cfn, "ness-web-site-main")

        assert not stack.exists
        assert stack.stack_status.is_not_found
        assert stack.outputs == {}

    def test_lookup_other_errors_propagate(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "DescribeStacks"
        )

        with pytest.raises(ClientError):
            CloudFormationStack.lookup(cfn, "ness-web-site-main")

    def test_outputs_only_for_completed_stacks(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack_description("UPDATE_IN_PROGRESS", outputs={"URL": "https://x"})
        assert CloudFormationStack.lookup(cfn, "s").outputs == {}

        cfn.describe_stacks.return_value = stack_description("UPDATE_COMPLETE", outputs={"URL": "https://x"})
        assert CloudFormationStack.lookup(cfn, "s").outputs == {"URL": "https://x"}


class TestTemplateParameters:
    """Test parameter resolution."""

    template = {
        "Parameters": {
            "DomainName": {"Type": "String", "Default": ""},
            "BucketName": {"Type": "String"},
            "Existing": {"Type": "String"},
        }
    }

    def test_supplied_values_and_defaults(self):
        params = TemplateParameters.from_template(self.template).supply_all(
            {"DomainName": None, "BucketName": "b", "Existing": "e"}
        )
        assert params == [
            {"ParameterKey": "BucketName", "ParameterValue": "b"},
            {"ParameterKey": "Existing", "ParameterValue": "e"},
        ]

    def test_use_previous_value(self):
        params = TemplateParameters.from_template(self.template).supply_all(
            {"BucketName": "b"}, previous=["Existing"]
        )
        assert {"ParameterKey": "Existing", "UsePreviousValue": True} in params

    def test_missing_required_parameter(self):
        with pytest.raises(ConfigurationError, match="BucketName"):
            TemplateParameters.from_template(self.template).supply_all({"Existing": "e"})

    def test_undeclared_parameters_are_ignored(self):
        params = TemplateParameters.from_template({"Parameters": {}}).supply_all({"Unknown": "x"})
        assert params == []


class TestChangeSetManager:
    """Test changeset creation and waiting."""

    def test_create_uses_unique_name_and_capabilities(self):
        cfn = Mock()
        cfn.create_change_set.return_value = {"Id": "arn:cs"}
        manager = ChangeSetManager(cfn, poll_interval=0)

        first = manager.create("stack", "CREATE", "body", [])
        second = manager.create("stack", "CREATE", "body", [])

        assert first.name != second.name
        assert first.name.startswith("ness-")
        kwargs = cfn.create_change_set.call_args.kwargs
        assert kwargs["ChangeSetType"] == "CREATE"
        assert "CAPABILITY_AUTO_EXPAND" in kwargs["Capabilities"]

    def test_wait_polls_until_complete(self):
        cfn = Mock()
        cfn.describe_change_set.side_effect = [
            {"Status": "CREATE_PENDING"},
            {"Status": "CREATE_IN_PROGRESS"},
            {"Status": "CREATE_COMPLETE", "Changes": [{"Type": "Resource"}]},
        ]
        manager = ChangeSetManager(cfn, poll_interval=0)
        handle = manager.create("stack", "UPDATE", "body", [])

        description = manager.wait_for_ready("stack", handle)

        assert description["Status"] == "CREATE_COMPLETE"
        assert cfn.describe_change_set.call_count == 3
        assert not manager.has_no_changes(description)

    def test_no_changes_is_terminal(self):
        cfn = Mock()
        cfn.describe_change_set.return_value = {
            "Status": "FAILED",
            "StatusReason": "The submitted information didn't contain changes. Submit different information.",
        }
        manager = ChangeSetManager(cfn, poll_interval=0)
        handle = manager.create("stack", "UPDATE", "body", [])

        description = manager.wait_for_ready("stack", handle)

        assert manager.has_no_changes(description)

    def test_failed_changeset_raises(self):
        cfn = Mock()
        cfn.describe_change_set.return_value = {"Status": "FAILED", "StatusReason": "Template format error"}
        manager = ChangeSetManager(cfn, poll_interval=0)
        handle = manager.create("stack", "CREATE", "body", [])

        with pytest.raises(ChangeSetError) as excinfo:
            manager.wait_for_ready("stack", handle)
        assert excinfo.value.reason == "Template format error"

    def test_transient_errors_keep_polling(self):
        cfn = Mock()
        cfn.describe_change_set.side_effect = [
            ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "DescribeChangeSet"),
            {"Status": "CREATE_COMPLETE"},
        ]
        manager = ChangeSetManager(cfn, poll_interval=0)
        handle = manager.create("stack", "CREATE", "body", [])

        assert manager.wait_for_ready("stack", handle)["Status"] == "CREATE_COMPLETE"

    def test_wait_is_cancellable(self):
        cfn = Mock()
        cfn.describe_change_set.return_value = {"Status": "CREATE_PENDING"}
        token = CancelToken()
        token.cancel()
        manager = ChangeSetManager(cfn, poll_interval=0, cancel=token)
        handle = manager.create("stack", "CREATE", "body", [])

        with pytest.raises(DeploymentCancelled):
            manager.wait_for_ready("stack", handle)

    def test_no_changes_prefixes(self):
        assert change_set_has_no_changes({"Status": "FAILED", "StatusReason": "No updates are to be performed."})
        assert not change_set_has_no_changes({"Status": "CREATE_COMPLETE"})


class TestStackWaiting:
    """Test waiting for stacks to settle."""

    def test_stabilize_returns_none_when_stack_disappears(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = [stack_description("DELETE_IN_PROGRESS"), not_found_error()]
        assert stabilize_stack(cfn, "s", poll_interval=0) is None

    def test_deploy_creation_failure(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = [stack_description("CREATE_IN_PROGRESS"), stack_description("ROLLBACK_COMPLETE")]
        with pytest.raises(StackDeployError, match="failed creation"):
            wait_for_stack_deploy(cfn, "s", poll_interval=0)

    def test_deploy_update_rollback(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack_description("UPDATE_ROLLBACK_COMPLETE")
        with pytest.raises(StackDeployError, match="failed to deploy"):
            wait_for_stack_deploy(cfn, "s", poll_interval=0)

    def test_deploy_never_terminal(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack_description("UPDATE_IN_PROGRESS")
        with pytest.raises(StackDeployError, match="did not reach a terminal state"):
            wait_for_stack_deploy(cfn, "s", poll_interval=0, timeout=0)
