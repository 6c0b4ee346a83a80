"""
Deploy choreography: web -> assets -> domain -> DNS validation -> alias ->
(conditional) web finalize.

The orchestrator is a generator of StepResult values; callers iterate it to
observe progress and read the DeployRun context for the final state.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import dns.exception
from botocore.exceptions import BotoCoreError, ClientError

from .assets import AssetPublisher
from .aws.discovery import ResourceDiscovery, has_ownership_marker, resolve_txt_records
from .aws.stacks import StackLifecycleManager
from .config import NessConfig
from .errors import DeploymentCancelled, DnsValidationError, NessError
from .events import EventReporter, EventTypes, NullReporter
from .parameters import (
    OUTPUT_BUCKET_NAME,
    OUTPUT_DISTRIBUTION_DOMAIN_NAME,
    OUTPUT_DISTRIBUTION_ID,
    OUTPUT_HOSTED_ZONE_ID,
    OUTPUT_STACK_NAME,
    OUTPUT_URL,
    alias_parameters,
    domain_parameters,
    web_parameters,
)
from .polling import CancelToken, wait_or_cancel
from .settings import NessSettings
from .templates import TemplateResolver

logger = logging.getLogger(__name__)

# Errors a step reports as a failure instead of raising
STEP_ERRORS = (NessError, ClientError, BotoCoreError, OSError)


class Step(Enum):
    DEPLOYING_WEB = "deploying_web"
    PUBLISHING_ASSETS = "publishing_assets"
    DEPLOYING_DOMAIN = "deploying_domain"
    VALIDATING_DNS = "validating_dns"
    SETTING_UP_ALIAS = "setting_up_alias"
    FINALIZING_WEB = "finalizing_web"
    FINISHED = "finished"


class Outcome(Enum):
    STARTED = "started"
    WAITING = "waiting"
    SUCCESS = "success"
    FAILURE = "failure"
    TOLERATED = "tolerated"     # failed, but the run carries on
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """One observable transition of an orchestration run."""
    step: Enum
    outcome: Outcome
    outputs: Optional[Dict[str, str]] = None
    message: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    nameservers: Optional[List[str]] = None

    @property
    def failed(self) -> bool:
        return self.outcome == Outcome.FAILURE

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["step"] = self.step.value
        data["outcome"] = self.outcome.value
        return data


@dataclass
class DeployRun:
    """State threaded through one deploy run."""
    settings: NessSettings
    publish_assets: bool = True
    web_outputs: Dict[str, str] = field(default_factory=dict)
    domain_outputs: Dict[str, str] = field(default_factory=dict)
    certificate_arn: Optional[str] = None
    needs_redeploy: bool = False
    nameservers: Optional[List[str]] = None
    nameservers_fetched: bool = False
    dns_attempts: int = 0
    web_deployed: bool = False
    assets_published: bool = False
    domain_deployed: bool = False
    dns_validated: bool = False
    alias_deployed: bool = False
    web_redeployed: bool = False
    failure: Optional[StepResult] = None

    @property
    def has_custom_domain(self) -> bool:
        return self.settings.has_custom_domain

    @property
    def site_url(self) -> Optional[str]:
        return self.web_outputs.get(OUTPUT_URL)

    @property
    def finished(self) -> bool:
        assets_done = self.assets_published or not self.publish_assets
        return (
            self.web_deployed
            and assets_done
            and (
                not self.has_custom_domain
                or self.web_redeployed
                or (not self.needs_redeploy and self.alias_deployed)
            )
        )


class DeployOrchestrator:
    """
    Sequences the stacks that make up one site deployment.

    Args:
        settings: Site settings
        stacks: Stack lifecycle manager
        discovery: Probes for pre-existing domain resources
        resolver: Builds stack descriptors for each stack kind
        publisher: Uploads the publish directory (None skips publishing)
        reporter: Event side channel
        config: Poll intervals, DNS attempt bound and ownership marker
        cancel: Cancels every polling loop when set
        txt_lookup: Resolves TXT records for a domain
    """

    def __init__(
        self,
        settings: NessSettings,
        stacks: StackLifecycleManager,
        discovery: ResourceDiscovery,
        resolver: TemplateResolver,
        publisher: Optional[AssetPublisher] = None,
        reporter: Optional[EventReporter] = None,
        config: Optional[NessConfig] = None,
        cancel: Optional[CancelToken] = None,
        txt_lookup: Callable[[str], List[str]] = resolve_txt_records,
    ):
        self.settings = settings
        self.stacks = stacks
        self.discovery = discovery
        self.resolver = resolver
        self.publisher = publisher
        self.reporter = reporter or NullReporter()
        self.config = config or NessConfig()
        self.cancel = cancel
        self.txt_lookup = txt_lookup
        self.context = DeployRun(settings=settings, publish_assets=publisher is not None)

    def _record(self, event_type: str, data: Dict[str, Any]) -> None:
        self.reporter.record(event_type, {
            "command": "deploy",
            "domain": self.settings.domain or "",
            **data,
        })

    def _stack_name(self, kind: str) -> str:
        return self.resolver.naming.name(kind)

    def _failure(self, step: Step, kind: Optional[str], message: str, error: Exception) -> StepResult:
        reason = self.stacks.failure_reason(self._stack_name(kind)) if kind else None
        logger.error(f"{message}: {error}")
        result = StepResult(step, Outcome.FAILURE, message=message, reason=reason, error=str(error))
        self.context.failure = result
        self._record(EventTypes.ERROR, {"step": step.value, "detail": str(error), "reason": reason})
        return result

    def _attempt(self, step: Step, kind: Optional[str], message: str,
                 action: Callable[[], Optional[Dict[str, str]]]) -> StepResult:
        try:
            outputs = action()
        except DeploymentCancelled:
            raise
        except STEP_ERRORS as e:
            return self._failure(step, kind, message, e)
        return StepResult(step, Outcome.SUCCESS, outputs=outputs)

    def _emit(self, result: StepResult) -> StepResult:
        self._record(EventTypes.STEP, result.to_dict())
        return result

    # Steps

    def _deploy_web(self, first: bool) -> Dict[str, str]:
        domain = self.settings.domain
        certificate_arn = self.discovery.get_certificate_arn(domain) if domain else None
        existing_distribution = self.discovery.get_distribution(domain) if domain else None

        if first:
            # Without an issued certificate, or while another distribution holds the
            # alias, the alias stack has to run before CloudFront can use the domain.
            self.context.needs_redeploy = certificate_arn is None or existing_distribution is not None
        self.context.certificate_arn = certificate_arn

        include_alias = certificate_arn is not None and existing_distribution is None
        stack = self.resolver.get_stack("web", web_parameters(self.settings, certificate_arn, include_alias))
        outputs = self.stacks.deploy(stack)
        self.context.web_outputs = outputs
        return outputs

    def _publish_assets(self) -> Dict[str, str]:
        bucket = self.context.web_outputs.get(OUTPUT_BUCKET_NAME)
        if not bucket:
            raise NessError("The web stack did not report a bucket name")

        count = self.publisher.publish(
            self.settings.require_publish_dir(),
            bucket,
            self.context.web_outputs.get(OUTPUT_DISTRIBUTION_ID),
        )
        return {"files": str(count)}

    def _deploy_domain(self) -> Dict[str, str]:
        domain = self.settings.domain
        zone = self.discovery.get_hosted_zone(domain)
        stack = self.resolver.get_stack("domain", domain_parameters(domain, zone.id if zone else None))
        outputs = self.stacks.deploy(stack)
        self.context.domain_outputs = outputs
        return outputs

    def _validate_dns(self) -> Iterator[StepResult]:
        """
        Poll TXT records until the ownership marker shows up.

        After a miss the hosted zone's nameservers are fetched until Route53 returns
        them, then reported once so the operator can point their registrar at them.
        """
        domain = self.settings.domain
        marker = self.config.ownership_marker
        max_attempts = self.config.dns_max_attempts

        while True:
            if self.cancel is not None:
                self.cancel.raise_if_cancelled()

            self.context.dns_attempts += 1
            try:
                records = self.txt_lookup(domain)
                if has_ownership_marker(records, marker):
                    return
            except dns.exception.DNSException as e:
                logger.debug(f"TXT lookup for {domain} failed: {e}")

            if max_attempts is not None and self.context.dns_attempts >= max_attempts:
                raise DnsValidationError(
                    f"Gave up waiting for DNS of {domain} after {self.context.dns_attempts} attempts"
                )

            wait_or_cancel(self.config.dns_poll_interval, self.cancel)

            if not self.context.nameservers_fetched:
                hosted_zone_id = self.context.domain_outputs.get(OUTPUT_HOSTED_ZONE_ID)
                if not hosted_zone_id:
                    raise DnsValidationError("The domain stack did not report a hosted zone id")

                nameservers = self.discovery.get_nameservers(hosted_zone_id)
                if not nameservers:
                    logger.debug(f"No nameservers for hosted zone {hosted_zone_id} yet")
                    continue

                self.context.nameservers_fetched = True
                self.context.nameservers = nameservers
                self._record(EventTypes.NAMESERVERS, {"nameservers": self.context.nameservers})
                yield StepResult(
                    Step.VALIDATING_DNS,
                    Outcome.WAITING,
                    message="Configure your domain registrar with the following nameservers",
                    nameservers=self.context.nameservers,
                )

    def _deploy_alias(self) -> Dict[str, str]:
        domain = self.settings.domain
        domain_outputs = self.context.domain_outputs
        web_outputs = self.context.web_outputs

        hosted_zone_id = domain_outputs.get(OUTPUT_HOSTED_ZONE_ID)
        if not hosted_zone_id:
            raise NessError("The domain stack did not report a hosted zone id")

        # An A record left behind by an earlier deploy blocks the alias stack
        a_record = self.discovery.get_a_record(hosted_zone_id, domain)
        if a_record is not None:
            current = (a_record.get("AliasTarget") or {}).get("DNSName", "").rstrip(".")
            expected = (web_outputs.get(OUTPUT_DISTRIBUTION_DOMAIN_NAME) or "").rstrip(".")
            if current != expected:
                logger.info(f"Removing stale A record for {domain} pointing at {current}")
                self.discovery.delete_records(hosted_zone_id, [a_record])

        stack = self.resolver.get_stack("alias", alias_parameters(
            self.settings,
            domain_stack=domain_outputs.get(OUTPUT_STACK_NAME) or self._stack_name("domain"),
            web_stack=web_outputs.get(OUTPUT_STACK_NAME) or self._stack_name("web"),
        ))
        outputs = self.stacks.deploy(stack)

        try:
            self.discovery.cleanup_validation_records(hosted_zone_id)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not clean up certificate validation records: {e}")

        return outputs

    # Choreography

    def run(self) -> Iterator[StepResult]:
        """
        Run the deploy, yielding a StepResult for every transition.

        Raises:
            ConfigurationError: Before anything is deployed, if assets are to be
                published and no publish directory is set
            DeploymentCancelled: If the cancel token is set while polling
        """
        if self.publisher is not None:
            self.settings.require_publish_dir()

        self._record(EventTypes.STARTED, {"options": self.settings.to_event_options()})
        try:
            for result in self._run_steps():
                yield self._emit(result)
        except DeploymentCancelled:
            self._record(EventTypes.CANCELLED, {})
            raise

        if self.context.finished:
            self._record(EventTypes.FINISHED, {"url": self.context.site_url})

    def _run_steps(self) -> Iterator[StepResult]:
        ctx = self.context

        yield StepResult(Step.DEPLOYING_WEB, Outcome.STARTED)
        result = self._attempt(Step.DEPLOYING_WEB, "web", "Failed to deploy your site",
                               lambda: self._deploy_web(first=True))
        yield result
        if result.failed:
            return
        ctx.web_deployed = True

        if self.publisher is None:
            yield StepResult(Step.PUBLISHING_ASSETS, Outcome.SKIPPED)
        else:
            yield StepResult(Step.PUBLISHING_ASSETS, Outcome.STARTED)
            result = self._attempt(Step.PUBLISHING_ASSETS, None, "Failed to push assets to S3",
                                   self._publish_assets)
            yield result
            if result.failed:
                return
            ctx.assets_published = True

        if not ctx.has_custom_domain:
            for step in (Step.DEPLOYING_DOMAIN, Step.VALIDATING_DNS, Step.SETTING_UP_ALIAS, Step.FINALIZING_WEB):
                yield StepResult(step, Outcome.SKIPPED)
        else:
            yield StepResult(Step.DEPLOYING_DOMAIN, Outcome.STARTED)
            result = self._attempt(Step.DEPLOYING_DOMAIN, "domain", "Failed to create your custom domain",
                                   self._deploy_domain)
            yield result
            if result.failed:
                return
            ctx.domain_deployed = True

            yield StepResult(Step.VALIDATING_DNS, Outcome.STARTED)
            try:
                yield from self._validate_dns()
            except DeploymentCancelled:
                raise
            except STEP_ERRORS as e:
                yield self._failure(Step.VALIDATING_DNS, None, "Failed to validate your custom domain DNS", e)
                return
            ctx.dns_validated = True
            yield StepResult(Step.VALIDATING_DNS, Outcome.SUCCESS)

            yield StepResult(Step.SETTING_UP_ALIAS, Outcome.STARTED)
            result = self._attempt(Step.SETTING_UP_ALIAS, "alias", "Failed to setup SSL for your custom domain",
                                   self._deploy_alias)
            yield result
            if result.failed:
                return
            ctx.alias_deployed = True

            if ctx.needs_redeploy:
                yield StepResult(Step.FINALIZING_WEB, Outcome.STARTED)
                result = self._attempt(Step.FINALIZING_WEB, "web", "Failed to point custom domain at your site",
                                       lambda: self._deploy_web(first=False))
                yield result
                if result.failed:
                    return
                ctx.web_redeployed = True
            else:
                yield StepResult(Step.FINALIZING_WEB, Outcome.SKIPPED)

        if ctx.finished:
            yield StepResult(Step.FINISHED, Outcome.SUCCESS, outputs={OUTPUT_URL: ctx.site_url or ""})

    def deploy(self) -> DeployRun:
        """Run to completion and return the run context."""
        for _ in self.run():
            pass
        return self.context
