"""
Destroy choreography: tear a site's stacks down in dependency order.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

from .assets import AssetPublisher
from .aws.stacks import StackLifecycleManager
from .deploy import STEP_ERRORS, Outcome, StepResult
from .errors import DeploymentCancelled
from .events import EventReporter, EventTypes, NullReporter
from .ids import StackNaming
from .parameters import EDGE_FUNCTIONS, OUTPUT_BUCKET_NAME, web_parameters
from .settings import NessSettings
from .templates import TemplateResolver

logger = logging.getLogger(__name__)

SITE_NOT_FOUND = "Couldn't find site. Are you sure you've deployed (from this branch)?"
UNABLE_TO_DELETE = "Unable to delete site"


class DestroyStep(Enum):
    FINDING_SITE = "finding_site"
    EMPTYING_BUCKET = "emptying_bucket"
    DETACHING_ALIAS = "detaching_alias"
    DELETING_ALIAS = "deleting_alias"
    DELETING_WEB = "deleting_web"
    DELETING_WEB_RETAINING_EDGE = "deleting_web_retaining_edge"
    DELETING_DOMAIN = "deleting_domain"
    DELETING_SUPPORT = "deleting_support"
    FINISHED = "finished"


@dataclass
class DestroyRun:
    bucket_emptied: bool = False
    alias_detached: bool = False
    alias_deleted: bool = False
    web_deleted: bool = False
    domain_deleted: bool = False
    support_deleted: bool = False
    failure: Optional[StepResult] = None

    @property
    def finished(self) -> bool:
        return self.web_deleted and self.alias_deleted and self.domain_deleted and self.support_deleted


class DestroyOrchestrator:
    """
    Deletes the alias, web, domain and support stacks of a site.

    The web stack is deleted twice: the first delete is expected to end in
    DELETE_FAILED because CloudFront still replicates the edge functions, and the
    second retains those functions.

    Args:
        settings: Site settings (used to detach the alias from the web stack)
        stacks: Stack lifecycle manager
        naming: Stack names for the project/branch
        resolver: Builds the web descriptor for the detach step (None skips it)
        publisher: Empties the bucket (None skips it)
        reporter: Event side channel
    """

    def __init__(
        self,
        settings: NessSettings,
        stacks: StackLifecycleManager,
        naming: StackNaming,
        resolver: Optional[TemplateResolver] = None,
        publisher: Optional[AssetPublisher] = None,
        reporter: Optional[EventReporter] = None,
    ):
        self.settings = settings
        self.stacks = stacks
        self.naming = naming
        self.resolver = resolver
        self.publisher = publisher
        self.reporter = reporter or NullReporter()
        self.context = DestroyRun()

    def _record(self, event_type: str, data: Dict[str, Any]) -> None:
        self.reporter.record(event_type, {"command": "destroy", "domain": self.settings.domain or "", **data})

    def _delete(self, step: DestroyStep, kind: str, action: Callable[[], None], fatal: bool = True) -> StepResult:
        try:
            action()
        except DeploymentCancelled:
            raise
        except STEP_ERRORS as e:
            self._record(EventTypes.ERROR, {"step": step.value, "detail": str(e)})
            if not fatal:
                logger.warning(f"{step.value} failed, continuing: {e}")
                return StepResult(step, Outcome.TOLERATED, error=str(e))

            reason = self.stacks.failure_reason(self.naming.name(kind))
            logger.error(f"{UNABLE_TO_DELETE}: {e}")
            result = StepResult(step, Outcome.FAILURE, message=UNABLE_TO_DELETE, reason=reason, error=str(e))
            self.context.failure = result
            return result
        return StepResult(step, Outcome.SUCCESS)

    def _empty_bucket(self, web_outputs: Dict[str, str]) -> StepResult:
        bucket = web_outputs.get(OUTPUT_BUCKET_NAME)
        if self.publisher is None or not bucket:
            return StepResult(DestroyStep.EMPTYING_BUCKET, Outcome.SKIPPED)

        result = self._delete(DestroyStep.EMPTYING_BUCKET, "web",
                              lambda: self.publisher.clear_bucket(bucket), fatal=False)
        self.context.bucket_emptied = result.outcome == Outcome.SUCCESS
        return result

    def _delete_failed(self, stack_name: str) -> bool:
        try:
            status = self.stacks.lookup(stack_name).stack_status
        except STEP_ERRORS as e:
            logger.warning(f"Could not read the status of {stack_name}: {e}")
            return False
        return status.is_deleted and status.is_failure

    def _detach_alias(self) -> None:
        # Drop the certificate from the distribution so nothing in the web stack
        # depends on the alias stack any more.
        stack = self.resolver.get_stack("web", web_parameters(self.settings, None, include_alias=False))
        self.stacks.deploy(stack)

    def run(self) -> Iterator[StepResult]:
        self._record(EventTypes.STARTED, {"options": self.settings.to_event_options()})
        try:
            for result in self._run_steps():
                self._record(EventTypes.STEP, result.to_dict())
                yield result
        except DeploymentCancelled:
            self._record(EventTypes.CANCELLED, {})
            raise

        if self.context.finished:
            self._record(EventTypes.FINISHED, {})

    def _run_steps(self) -> Iterator[StepResult]:
        ctx = self.context
        web_stack = self.naming.name("web")

        web_outputs = self.stacks.outputs(web_stack)
        if web_outputs is None:
            result = StepResult(DestroyStep.FINDING_SITE, Outcome.FAILURE, message=SITE_NOT_FOUND)
            ctx.failure = result
            yield result
            return
        yield StepResult(DestroyStep.FINDING_SITE, Outcome.SUCCESS, outputs=web_outputs)

        yield self._empty_bucket(web_outputs)

        if self.resolver is None:
            yield StepResult(DestroyStep.DETACHING_ALIAS, Outcome.SKIPPED)
        elif self._delete_failed(web_stack):
            # A stack stuck in DELETE_FAILED rejects updates; an earlier run already detached it
            yield StepResult(DestroyStep.DETACHING_ALIAS, Outcome.SKIPPED,
                             message=f"{web_stack} is DELETE_FAILED")
        else:
            result = self._delete(DestroyStep.DETACHING_ALIAS, "web", self._detach_alias)
            yield result
            if result.failed:
                return
            ctx.alias_detached = True

        result = self._delete(DestroyStep.DELETING_ALIAS, "alias",
                              lambda: self.stacks.destroy(self.naming.name("alias")))
        yield result
        if result.failed:
            return
        ctx.alias_deleted = True

        # Expected to end in DELETE_FAILED while the edge functions replicate
        yield self._delete(DestroyStep.DELETING_WEB, "web", lambda: self.stacks.destroy(web_stack), fatal=False)

        result = self._delete(DestroyStep.DELETING_WEB_RETAINING_EDGE, "web",
                              lambda: self.stacks.destroy(web_stack, retain=EDGE_FUNCTIONS))
        yield result
        if result.failed:
            return
        ctx.web_deleted = True

        result = self._delete(DestroyStep.DELETING_DOMAIN, "domain",
                              lambda: self.stacks.destroy(self.naming.name("domain")))
        yield result
        if result.failed:
            return
        ctx.domain_deleted = True

        result = self._delete(DestroyStep.DELETING_SUPPORT, "support",
                              lambda: self.stacks.destroy(self.naming.name("support")))
        yield result
        if result.failed:
            return
        ctx.support_deleted = True

        yield StepResult(DestroyStep.FINISHED, Outcome.SUCCESS)

    def destroy(self) -> DestroyRun:
        for _ in self.run():
            pass
        return self.context
