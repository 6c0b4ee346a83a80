"""
Command line interface for ness.
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from .assets import S3AssetPublisher
from .aws.discovery import ResourceDiscovery
from .aws.session import create_session
from .aws.stacks import StackLifecycleManager
from .config import NessConfig
from .deploy import DeployOrchestrator, Outcome, StepResult
from .destroy import DestroyOrchestrator
from .errors import ConfigurationError, DeploymentCancelled
from .events import (
    EventReporter,
    HttpEventReporter,
    MultiReporter,
    NdjsonEventReporter,
    events_path,
    read_events,
)
from .ids import STACK_KINDS, StackNaming
from .polling import CancelToken
from .settings import NessSettings, load_settings, save_settings
from .templates import TemplateResolver

logger = logging.getLogger(__name__)

_ICONS = {
    Outcome.STARTED: "⏳",
    Outcome.WAITING: "⌛",
    Outcome.SUCCESS: "✅",
    Outcome.FAILURE: "❌",
    Outcome.TOLERATED: "⚠️",
    Outcome.SKIPPED: "⏭️",
}


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, verbose):
    """Ness - deploy static websites to AWS."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # botocore is very chatty at debug level
    logging.getLogger("botocore").setLevel(logging.WARNING)


def site_options(func):
    """Options shared by deploy and destroy."""
    @click.option("--dir", "publish_dir", help="Directory to publish")
    @click.option("--domain", help="Custom domain for the site")
    @click.option("--redirect-www/--no-redirect-www", default=None, help="Redirect www.<domain> to <domain>")
    @click.option("--spa/--no-spa", default=None, help="Serve the index document for unknown paths")
    @click.option("--prod/--no-prod", default=None, help="Use every CloudFront edge location")
    @click.option("--profile", help="AWS named profile")
    @click.option("--templates", "templates_dir", default="stacks", show_default=True,
                  help="Directory holding domain.yaml, web.yaml and alias.yaml")
    @click.option("--project-root", default=".", show_default=True, help="Project root")
    @click.option("--json", "output_json", is_flag=True, help="Output machine-readable JSON")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)
    return wrapper


def _json_output(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data))


def _print_result(result: StepResult, output_json: bool) -> None:
    if output_json:
        _json_output(result.to_dict())
        return

    icon = _ICONS.get(result.outcome, "")
    click.echo(f"{icon} {result.step.value.replace('_', ' ')}: {result.outcome.value}")
    if result.nameservers:
        click.echo(f"   {result.message}:")
        for nameserver in result.nameservers:
            click.echo(f"     {nameserver}")
    if result.failed:
        click.echo(f"   {result.message}" + (f":\n\n   {result.reason}" if result.reason else ""), err=True)


def _load_settings(project_root: str, overrides: Dict[str, Any]) -> NessSettings:
    settings = load_settings(project_root) or NessSettings()
    return settings.merge(overrides)


def _build_reporter(config: NessConfig, naming: StackNaming, command: str) -> EventReporter:
    reporters = [NdjsonEventReporter(events_path(config.home_path, naming.base))]
    if config.events_url:
        reporters.append(HttpEventReporter(config.events_url, command))
    return MultiReporter(reporters)


def _flush(reporter: EventReporter) -> None:
    for child in getattr(reporter, "reporters", []):
        if isinstance(child, HttpEventReporter):
            child.flush()


def _run(orchestrator, cancel: CancelToken, output_json: bool) -> None:
    try:
        for result in orchestrator.run():
            _print_result(result, output_json)
    except KeyboardInterrupt:
        cancel.cancel()
        click.echo("\nCancelled by user", err=True)
        sys.exit(130)
    except DeploymentCancelled:
        click.echo("\nCancelled", err=True)
        sys.exit(130)
    finally:
        _flush(orchestrator.reporter)


@main.command("deploy")
@site_options
@click.option("--save", is_flag=True, help="Persist these settings to ness.json")
def deploy_cmd(publish_dir, domain, redirect_www, spa, prod, profile, templates_dir, project_root,
               output_json, save):
    """Deploy the site."""
    try:
        config = NessConfig.from_env()
        settings = _load_settings(project_root, {
            "dir": publish_dir, "domain": domain, "redirect_www": redirect_www,
            "spa": spa, "prod": prod, "profile": profile,
        })
        settings.require_publish_dir()

        naming = StackNaming.discover(project_root, prefix=config.stack_prefix)
        session = create_session(settings.profile, config.region)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    if save:
        save_settings(settings, project_root)

    cancel = CancelToken()
    cfn = session.client("cloudformation", region_name=config.region)
    orchestrator = DeployOrchestrator(
        settings=settings,
        stacks=StackLifecycleManager(cfn, config, cancel),
        discovery=ResourceDiscovery(session, config.region),
        resolver=TemplateResolver(Path(project_root) / templates_dir, naming),
        publisher=S3AssetPublisher(session, config.region),
        reporter=_build_reporter(config, naming, "deploy"),
        config=config,
        cancel=cancel,
    )

    try:
        _run(orchestrator, cancel, output_json)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    run = orchestrator.context
    if run.finished:
        if not output_json:
            click.echo(f"\n🎉 Site successfully deployed:\n{run.site_url}")
        sys.exit(0)
    sys.exit(1)


@main.command("destroy")
@site_options
def destroy_cmd(publish_dir, domain, redirect_www, spa, prod, profile, templates_dir, project_root, output_json):
    """Destroy every stack of the site on this branch."""
    try:
        config = NessConfig.from_env()
        settings = _load_settings(project_root, {
            "dir": publish_dir, "domain": domain, "redirect_www": redirect_www,
            "spa": spa, "prod": prod, "profile": profile,
        })
        naming = StackNaming.discover(project_root, prefix=config.stack_prefix)
        session = create_session(settings.profile, config.region)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    resolver: Optional[TemplateResolver] = None
    templates_path = Path(project_root) / templates_dir
    if (templates_path / "web.yaml").exists():
        resolver = TemplateResolver(templates_path, naming)

    cancel = CancelToken()
    cfn = session.client("cloudformation", region_name=config.region)
    orchestrator = DestroyOrchestrator(
        settings=settings,
        stacks=StackLifecycleManager(cfn, config, cancel),
        naming=naming,
        resolver=resolver,
        publisher=S3AssetPublisher(session, config.region),
        reporter=_build_reporter(config, naming, "destroy"),
    )

    _run(orchestrator, cancel, output_json)
    sys.exit(0 if orchestrator.context.finished else 1)


@main.command()
@click.option("--profile", help="AWS named profile")
@click.option("--project-root", default=".", show_default=True, help="Project root")
@click.option("--json", "output_json", is_flag=True, help="Output machine-readable JSON")
def status(profile, project_root, output_json):
    """Show the stacks of this project/branch and their status."""
    try:
        config = NessConfig.from_env()
        naming = StackNaming.discover(project_root, prefix=config.stack_prefix)
        session = create_session(profile, config.region)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    stacks = StackLifecycleManager(session.client("cloudformation", region_name=config.region), config)

    rows = []
    for kind in STACK_KINDS:
        name = naming.name(kind)
        stack = stacks.lookup(name)
        rows.append({"kind": kind, "stack": name, "status": str(stack.stack_status), "outputs": stack.outputs})

    events = read_events(events_path(config.home_path, naming.base))
    last_event = events[-1] if events else None

    if output_json:
        _json_output({"project": naming.project, "branch": naming.branch, "stacks": rows, "last_event": last_event})
        return

    click.echo(f"Project: {naming.project}  Branch: {naming.branch}")
    for row in rows:
        click.echo(f"  {row['kind']:<8} {row['stack']:<50} {row['status']}")
    if last_event:
        click.echo(f"Last event: {last_event.get('type')} at {last_event.get('ts')}")


if __name__ == "__main__":
    main()
