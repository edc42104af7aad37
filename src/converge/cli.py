"""CLI entrypoint for converge."""

import dataclasses
import logging
import sys
from pathlib import Path

import click

from converge.aws.client import AwsClient
from converge.config import Settings
from converge.errors import ConfigurationError
from converge.formatter import format_json, format_markdown, format_table
from converge.models import ApplyResult, Outcome, Plan, RunResult
from converge.resources.registry import get_resource_type
from converge.runner import Runner, Target
from converge.state import StateStore, load_desired

FORMATTERS = {
    "table": format_table,
    "json": format_json,
    "markdown": format_markdown,
}

desired_option = click.option(
    "--desired",
    "desired_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Desired-state JSON document.",
)
state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("converge.state.json"),
    show_default=True,
    help="Local state file.",
)
format_option = click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(FORMATTERS)),
    default="table",
    help="Output format.",
)


@click.group()
@click.option("--region", default=None, help="AWS region.")
@click.option(
    "--max-concurrent",
    type=click.IntRange(1, 50),
    default=None,
    help="Max resources reconciled concurrently.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx, region, max_concurrent, verbose):
    """Reconcile AWS resources with a desired-state document."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings.from_env()
        overrides = {}
        if region:
            overrides["region"] = region
        if max_concurrent:
            overrides["max_concurrent"] = max_concurrent
        settings = dataclasses.replace(settings, **overrides)
    except ConfigurationError as err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(2)
    ctx.obj = settings


@main.command()
@desired_option
@state_option
@format_option
@click.pass_obj
def plan(settings, desired_path, state_path, output_format):
    """Show what apply would change."""
    store = StateStore(state_path)
    runner = Runner(AwsClient(region=settings.region), settings)
    run = runner.plan(_targets(desired_path, store))
    _emit(run, output_format)
    sys.exit(_exit_code(run))


@main.command()
@desired_option
@state_option
@format_option
@click.option("--allow-replace", is_flag=True, help="Destroy and recreate on immutable changes.")
@click.pass_obj
def apply(settings, desired_path, state_path, output_format, allow_replace):
    """Converge resources to the desired state."""
    store = StateStore(state_path)
    targets = _targets(desired_path, store)
    runner = Runner(AwsClient(region=settings.region), settings)
    run = runner.apply(targets, allow_replace=allow_replace)
    _record(store, targets, run)
    _emit(run, output_format)
    sys.exit(_exit_code(run))


@main.command()
@state_option
@format_option
@click.pass_obj
def destroy(settings, state_path, output_format):
    """Delete every resource recorded in state."""
    store = StateStore(state_path)
    targets = _state_targets(store)
    runner = Runner(AwsClient(region=settings.region), settings)
    run = runner.destroy(targets)
    _record(store, targets, run)
    _emit(run, output_format)
    sys.exit(_exit_code(run))


@main.command()
@state_option
@format_option
@click.pass_obj
def refresh(settings, state_path, output_format):
    """Re-read recorded resources and drop those that no longer exist."""
    store = StateStore(state_path)
    targets = _state_targets(store)
    runner = Runner(AwsClient(region=settings.region), settings)
    run = runner.refresh(targets)
    _record(store, targets, run)
    _emit(run, output_format)
    sys.exit(_exit_code(run))


def _targets(desired_path: Path, store: StateStore) -> list[Target]:
    try:
        desired = load_desired(desired_path)
        targets = [
            Target(
                address=address,
                resource_type=get_resource_type(resource.type),
                desired=resource.attributes,
                identifier=store.identifier(address),
            )
            for address, resource in desired.items()
        ]
        for address, entry in store.entries.items():
            if address not in desired:
                targets.append(
                    Target(address, get_resource_type(entry.type), None, entry.identifier)
                )
    except (KeyError, ValueError) as err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(2)
    return targets


def _state_targets(store: StateStore) -> list[Target]:
    try:
        return [
            Target(address, get_resource_type(entry.type), None, entry.identifier)
            for address, entry in store.entries.items()
        ]
    except KeyError as err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(2)


def _record(store: StateStore, targets: list[Target], run: RunResult) -> None:
    types = {t.address: t.resource_type.name for t in targets}
    for address, result in run.results.items():
        if isinstance(result, ApplyResult):
            store.record(address, types[address], result)
    store.save()


def _emit(run: RunResult, output_format: str) -> None:
    click.echo(FORMATTERS[output_format](run))
    for address in run.failed:
        click.echo(f"Error: {address} failed; see log output.", err=True)


def _exit_code(run: RunResult) -> int:
    if run.failed:
        return 2
    for result in run.results.values():
        if isinstance(result, Plan):
            if result.has_changes:
                return 1
        elif not result.ok or result.outcome == Outcome.REPLACEMENT_REQUIRED:
            return 1
    return 0
