"""
CloudFormation primitives: stack lookup, template parameters, changesets and
waiting for stacks to settle.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from botocore.exceptions import ClientError

from ..errors import ChangeSetError, ConfigurationError, StackDeployError
from ..ids import new_change_set_name
from ..polling import CancelToken, Deadline, wait_or_cancel
from .stack_status import StackStatus

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]

NO_CHANGES_PREFIXES = (
    "The submitted information didn't contain changes.",
    "No updates are to be performed.",
)

CHANGE_SET_PENDING = ("CREATE_PENDING", "CREATE_IN_PROGRESS")


def is_not_found_error(error: ClientError) -> bool:
    """True if a describe call failed because the stack does not exist."""
    err = error.response.get("Error", {})
    return err.get("Code") == "ValidationError" and "does not exist" in err.get("Message", "")


class CloudFormationStack:
    """
    The last observed state of a stack: either not found, or existing with a
    status and (once complete) outputs.
    """

    def __init__(self, stack_name: str, description: Optional[Dict[str, Any]] = None):
        self.stack_name = stack_name
        self.description = description

    @classmethod
    def lookup(cls, cfn, stack_name: str) -> "CloudFormationStack":
        """
        Describe a stack, mapping "does not exist" to a not-found stack.

        Raises:
            ClientError: For any provider error other than not-found
        """
        try:
            response = cfn.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if is_not_found_error(e):
                return cls.does_not_exist(stack_name)
            raise

        stacks = response.get("Stacks") or []
        if not stacks:
            return cls.does_not_exist(stack_name)
        return cls(stack_name, stacks[0])

    @classmethod
    def does_not_exist(cls, stack_name: str) -> "CloudFormationStack":
        return cls(stack_name, None)

    @property
    def exists(self) -> bool:
        return self.description is not None

    @property
    def stack_status(self) -> StackStatus:
        if not self.exists:
            return StackStatus.not_found()
        return StackStatus.from_stack_description(self.description)

    @property
    def outputs(self) -> Dict[str, str]:
        if not self.exists or not self.stack_status.is_complete:
            return {}
        return {
            o["OutputKey"]: o.get("OutputValue", "")
            for o in self.description.get("Outputs", [])
            if "OutputKey" in o
        }

    @property
    def parameter_names(self) -> List[str]:
        if not self.exists:
            return []
        return [p["ParameterKey"] for p in self.description.get("Parameters", [])]

    def __repr__(self) -> str:
        return f"CloudFormationStack({self.stack_name!r}, {self.stack_status})"


class TemplateParameters:
    """Parameters declared by a template and how to supply them."""

    def __init__(self, declared: Mapping[str, Dict[str, Any]]):
        self.declared = dict(declared)

    @classmethod
    def from_template(cls, template: Dict[str, Any]) -> "TemplateParameters":
        return cls(template.get("Parameters") or {})

    def supply_all(self, supplied: Mapping[str, Optional[str]], previous: Iterable[str] = ()) -> List[Dict[str, Any]]:
        """
        Build the API parameter list for a changeset.

        None values are left out so the template default applies. A parameter
        with no value and no default reuses the existing stack's value when there
        is one.

        Args:
            supplied: Parameter values from the stack descriptor
            previous: Parameter names the existing stack already has

        Returns:
            List of {"ParameterKey", "ParameterValue"|"UsePreviousValue"} dicts

        Raises:
            ConfigurationError: If a required parameter has no value
        """
        previous = set(previous)

        for key in supplied:
            if key not in self.declared:
                logger.warning(f"Ignoring parameter {key}: not declared by the template")

        api_parameters = []
        missing = []
        for key, declaration in self.declared.items():
            value = supplied.get(key)
            if value is not None:
                api_parameters.append({"ParameterKey": key, "ParameterValue": str(value)})
            elif "Default" in (declaration or {}):
                continue
            elif key in previous:
                api_parameters.append({"ParameterKey": key, "UsePreviousValue": True})
            else:
                missing.append(key)

        if missing:
            raise ConfigurationError(f"The following CloudFormation Parameters are missing a value: {', '.join(missing)}")

        return api_parameters


@dataclass(frozen=True)
class ChangeSetHandle:
    name: str
    id: Optional[str]
    change_set_type: str
    description: str


def change_set_has_no_changes(description: Dict[str, Any]) -> bool:
    reason = description.get("StatusReason") or ""
    return description.get("Status") == "FAILED" and reason.startswith(NO_CHANGES_PREFIXES)


class ChangeSetManager:
    """Creates changesets, waits for them to compute, then executes or discards them."""

    def __init__(self, cfn, poll_interval: float = 5.0, timeout: Optional[float] = 600.0,
                 cancel: Optional[CancelToken] = None, prefix: str = "ness"):
        self.cfn = cfn
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.cancel = cancel
        self.prefix = prefix

    def create(self, stack_name: str, change_set_type: str, template_body: str,
               parameters: List[Dict[str, Any]]) -> ChangeSetHandle:
        name, execution_id = new_change_set_name(self.prefix)
        description = f"Ness changeset for execution {execution_id}"

        logger.info(f"Creating {change_set_type} changeset {name} for {stack_name}")
        response = self.cfn.create_change_set(
            StackName=stack_name,
            ChangeSetName=name,
            ChangeSetType=change_set_type,
            Description=description,
            TemplateBody=template_body,
            Parameters=parameters,
            Capabilities=CAPABILITIES,
        )
        return ChangeSetHandle(name=name, id=response.get("Id"), change_set_type=change_set_type,
                               description=description)

    def wait_for_ready(self, stack_name: str, handle: ChangeSetHandle) -> Dict[str, Any]:
        """
        Poll until the changeset is computed.

        Returns:
            The changeset description; "no changes" comes back as a FAILED
            description for which has_no_changes() is True

        Raises:
            ChangeSetError: If computation failed or did not finish in time
            DeploymentCancelled: If the run was cancelled
        """
        deadline = Deadline(self.timeout)
        while True:
            try:
                description = self.cfn.describe_change_set(StackName=stack_name, ChangeSetName=handle.name)
            except ClientError as e:
                logger.warning(f"Error describing changeset {handle.name}, retrying: {e}")
                description = None

            if description is not None:
                status = description.get("Status")
                if status not in CHANGE_SET_PENDING:
                    if status == "CREATE_COMPLETE" or change_set_has_no_changes(description):
                        return description
                    reason = description.get("StatusReason")
                    raise ChangeSetError(
                        f"Failed to create ChangeSet {handle.name} on {stack_name}: {status}, {reason}",
                        stack_name, handle.name, reason,
                    )

            if deadline.expired:
                raise ChangeSetError(f"ChangeSet {handle.name} on {stack_name} did not finish computing",
                                     stack_name, handle.name)
            wait_or_cancel(self.poll_interval, self.cancel)

    @staticmethod
    def has_no_changes(description: Dict[str, Any]) -> bool:
        return change_set_has_no_changes(description)

    def execute(self, stack_name: str, handle: ChangeSetHandle) -> None:
        logger.info(f"Executing changeset {handle.name} on {stack_name}")
        self.cfn.execute_change_set(StackName=stack_name, ChangeSetName=handle.name)

    def discard(self, stack_name: str, handle: ChangeSetHandle) -> None:
        logger.info(f"Discarding changeset {handle.name} on {stack_name}")
        self.cfn.delete_change_set(StackName=stack_name, ChangeSetName=handle.name)


def stabilize_stack(cfn, stack_name: str, poll_interval: float, timeout: Optional[float] = None,
                    cancel: Optional[CancelToken] = None) -> Optional[CloudFormationStack]:
    """
    Poll a stack until it leaves every *_IN_PROGRESS state.

    Provider errors other than not-found are logged and polling continues.

    Returns:
        The settled stack, the still-in-progress stack if the timeout elapsed,
        or None if the stack no longer exists
    """
    deadline = Deadline(timeout)
    last_seen = None
    while True:
        try:
            stack = CloudFormationStack.lookup(cfn, stack_name)
        except ClientError as e:
            logger.warning(f"Error describing stack {stack_name}, retrying: {e}")
            stack = None
        else:
            if not stack.exists:
                return None
            last_seen = stack
            status = stack.stack_status
            if not status.is_in_progress:
                return stack
            logger.debug(f"Stack {stack_name} is {status}")

        if deadline.expired:
            return last_seen
        wait_or_cancel(poll_interval, cancel)


def wait_for_stack_deploy(cfn, stack_name: str, poll_interval: float, timeout: Optional[float] = None,
                          cancel: Optional[CancelToken] = None) -> Optional[CloudFormationStack]:
    """
    Wait for a stack to finish deploying.

    Returns:
        The deployed stack, or None if it disappeared

    Raises:
        StackDeployError: If the stack failed or never reached a terminal state
    """
    stack = stabilize_stack(cfn, stack_name, poll_interval, timeout, cancel)
    if stack is None:
        return None

    status = stack.stack_status
    if status.is_in_progress:
        raise StackDeployError(f"The stack named {stack_name} did not reach a terminal state: {status}",
                               stack_name, status)
    if status.is_creation_failure:
        raise StackDeployError(
            f"The stack named {stack_name} failed creation, it may need to be manually deleted "
            f"from the AWS console: {status}",
            stack_name, status,
        )
    if not status.is_deploy_success:
        raise StackDeployError(f"The stack named {stack_name} failed to deploy: {status}", stack_name, status)

    return stack


def wait_for_stack_delete(cfn, stack_name: str, poll_interval: float, timeout: Optional[float] = None,
                          cancel: Optional[CancelToken] = None) -> Optional[CloudFormationStack]:
    """
    Wait for a stack deletion to settle.

    Returns:
        None once the stack is gone, otherwise the last observed stack (the caller
        decides whether its status counts as deleted)
    """
    return stabilize_stack(cfn, stack_name, poll_interval, timeout, cancel)
