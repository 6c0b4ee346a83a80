"""
Stack lifecycle management: lookup, idempotent deploy and destroy.
"""

import logging
from typing import Dict, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import NessConfig
from ..errors import NessError, StackDeleteError, StackDeployError
from ..polling import CancelToken
from ..templates import StackDescriptor, to_yaml
from .cloudformation import (
    ChangeSetHandle,
    ChangeSetManager,
    CloudFormationStack,
    TemplateParameters,
    wait_for_stack_delete,
    wait_for_stack_deploy,
)

logger = logging.getLogger(__name__)

BENIGN_FAILURE_REASON = "Resource creation cancelled"


class StackLifecycleManager:
    """
    Drives one CloudFormation stack at a time to a terminal state.

    Args:
        cfn: boto3 CloudFormation client
        config: Poll intervals and timeouts
        cancel: Token checked by every polling loop
    """

    def __init__(self, cfn, config: Optional[NessConfig] = None, cancel: Optional[CancelToken] = None,
                 change_sets: Optional[ChangeSetManager] = None):
        self.cfn = cfn
        self.config = config or NessConfig()
        self.cancel = cancel
        self.change_sets = change_sets or ChangeSetManager(
            cfn,
            poll_interval=self.config.poll_interval,
            timeout=self.config.changeset_timeout,
            cancel=cancel,
            prefix=self.config.stack_prefix,
        )

    def lookup(self, stack_name: str) -> CloudFormationStack:
        return CloudFormationStack.lookup(self.cfn, stack_name)

    def outputs(self, stack_name: str) -> Optional[Dict[str, str]]:
        """Outputs of an existing stack, or None if the stack does not exist."""
        stack = self.lookup(stack_name)
        if not stack.exists:
            return None
        return stack.outputs

    def _wait_for_delete(self, stack_name: str) -> Optional[CloudFormationStack]:
        return wait_for_stack_delete(self.cfn, stack_name, self.config.poll_interval,
                                     self.config.stack_timeout, self.cancel)

    def _discard_quietly(self, stack_name: str, handle: ChangeSetHandle) -> None:
        """Delete a changeset that will never be executed; errors are only logged."""
        try:
            self.change_sets.discard(stack_name, handle)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not delete changeset {handle.name} on {stack_name}: {e}")

    def deploy(self, descriptor: StackDescriptor) -> Dict[str, str]:
        """
        Create or update a stack through a changeset.

        A stack left in ROLLBACK_COMPLETE / ROLLBACK_FAILED is deleted first. A
        changeset without changes is discarded and the current outputs returned. A
        changeset that fails, times out or is cancelled before execution is deleted too.

        Args:
            descriptor: Stack name, parameters and template

        Returns:
            Stack outputs keyed by output name

        Raises:
            ConfigurationError: If a required template parameter has no value
            StackDeployError: If the stack cannot be deployed
            ChangeSetError: If the changeset cannot be computed
        """
        stack_name = descriptor.stack_name
        stack = self.lookup(stack_name)

        if stack.stack_status.is_creation_failure:
            logger.info(f"Stack {stack_name} previously failed creation ({stack.stack_status}), deleting it")
            self.cfn.delete_stack(StackName=stack_name)
            deleted = self._wait_for_delete(stack_name)
            if deleted is not None and deleted.stack_status.name != "DELETE_COMPLETE":
                raise StackDeployError(
                    f"Failed deleting stack {stack_name} that had previously failed creation "
                    f"(current state: {deleted.stack_status})",
                    stack_name, deleted.stack_status,
                )
            # We just deleted it, no need to ask CloudFormation again.
            stack = CloudFormationStack.does_not_exist(stack_name)

        parameters = TemplateParameters.from_template(descriptor.template).supply_all(
            descriptor.parameters, previous=stack.parameter_names
        )

        update = stack.exists and stack.stack_status.name != "REVIEW_IN_PROGRESS"
        handle = self.change_sets.create(
            stack_name,
            "UPDATE" if update else "CREATE",
            to_yaml(descriptor.template),
            parameters,
        )

        try:
            description = self.change_sets.wait_for_ready(stack_name, handle)
        except (NessError, ClientError, BotoCoreError):
            self._discard_quietly(stack_name, handle)
            raise

        if self.change_sets.has_no_changes(description):
            logger.info(f"No changes to {stack_name}")
            self.change_sets.discard(stack_name, handle)
            return stack.outputs

        try:
            self.change_sets.execute(stack_name, handle)
        except (ClientError, BotoCoreError):
            self._discard_quietly(stack_name, handle)
            raise

        final = wait_for_stack_deploy(self.cfn, stack_name, self.config.poll_interval,
                                      self.config.stack_timeout, self.cancel)
        if final is None:
            raise StackDeployError(
                "Stack deploy failed (the stack disappeared while we were deploying it)", stack_name
            )

        logger.info(f"Stack {stack_name} deployed: {final.stack_status}")
        return final.outputs

    def destroy(self, stack_name: str, retain: Optional[Iterable[str]] = None) -> None:
        """
        Delete a stack and wait for the deletion to finish. No-op if it does not exist.

        Args:
            stack_name: Stack to delete
            retain: Logical resource ids to keep (only valid for DELETE_FAILED stacks)

        Raises:
            StackDeleteError: If the stack ends in any state but DELETE_COMPLETE
        """
        current = self.lookup(stack_name)
        if not current.exists:
            logger.info(f"Stack {stack_name} does not exist, nothing to delete")
            return

        kwargs = {"StackName": stack_name}
        if retain:
            kwargs["RetainResources"] = list(retain)

        logger.info(f"Deleting stack {stack_name}")
        self.cfn.delete_stack(**kwargs)
        destroyed = self._wait_for_delete(stack_name)

        if destroyed is not None and destroyed.stack_status.name != "DELETE_COMPLETE":
            raise StackDeleteError(f"Failed to destroy {stack_name}: {destroyed.stack_status}",
                                   stack_name, destroyed.stack_status)

    def failure_reason(self, stack_name: str) -> Optional[str]:
        """
        Most recent CREATE_FAILED / UPDATE_FAILED reason from the stack's events.

        Returns:
            The reason text, or None if there is none (or events are unavailable)
        """
        try:
            response = self.cfn.describe_stack_events(StackName=stack_name)
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Could not read events for {stack_name}: {e}")
            return None

        # Events are returned newest first
        for event in response.get("StackEvents") or []:
            status = event.get("ResourceStatus")
            reason = event.get("ResourceStatusReason")
            if not status or not reason:
                continue
            if status in ("CREATE_FAILED", "UPDATE_FAILED") and reason != BENIGN_FAILURE_REASON:
                return reason

        return None
