"""Click commands: ``kpersist run`` and ``kpersist diff``."""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import BinaryIO

import click

from kpersist import __version__
from kpersist.config import load_config
from kpersist.errors import MalformedInputError
from kpersist.ledger.diff import diff
from kpersist.models.config import FailurePolicy, KPersistConfig


@click.group()
@click.version_option(__version__, prog_name="kpersist")
def cli() -> None:
    """Persist the lifecycle of watched Kubernetes entities to files."""


@cli.command()
@click.option("--output-dir", type=click.Path(file_okay=False, path_type=Path), help="Base directory for run output.")
@click.option("--namespace", help="Only watch this namespace (default: all namespaces).")
@click.option("--label-selector", help="Label selector for pods whose logs are persisted.")
@click.option("--group", "resource_group", help="API group of the watched custom resource.")
@click.option("--version", "resource_version", help="API version of the watched custom resource.")
@click.option("--plural", help="Plural name of the watched custom resource.")
@click.option(
    "--failure-policy",
    type=click.Choice([p.value for p in FailurePolicy]),
    help="What a failed resource tracker does to the process.",
)
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]))
def run(
    output_dir: Path | None,
    namespace: str | None,
    label_selector: str | None,
    resource_group: str | None,
    resource_version: str | None,
    plural: str | None,
    failure_policy: str | None,
    log_level: str | None,
) -> None:
    """Watch the cluster and persist entity state until interrupted.

    Options override the corresponding KPERSIST_* environment variables.
    """
    from kpersist.app import main

    try:
        config = load_config()
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    config = _apply_overrides(
        config,
        output_dir=output_dir,
        namespace=namespace,
        label_selector=label_selector,
        resource_group=resource_group,
        resource_version=resource_version,
        plural=plural,
        failure_policy=failure_policy,
        log_level=log_level,
    )
    asyncio.run(main(config))


def _apply_overrides(
    config: KPersistConfig,
    *,
    output_dir: Path | None = None,
    namespace: str | None = None,
    label_selector: str | None = None,
    resource_group: str | None = None,
    resource_version: str | None = None,
    plural: str | None = None,
    failure_policy: str | None = None,
    log_level: str | None = None,
) -> KPersistConfig:
    resources = config.resources
    pods = config.pods
    if namespace is not None:
        resources = dataclasses.replace(resources, namespace=namespace)
        pods = dataclasses.replace(pods, namespace=namespace)
    if resource_group:
        resources = dataclasses.replace(resources, group=resource_group)
    if resource_version:
        resources = dataclasses.replace(resources, version=resource_version)
    if plural:
        resources = dataclasses.replace(resources, plural=plural)
    if label_selector is not None:
        pods = dataclasses.replace(pods, label_selector=label_selector)

    output = config.output
    if output_dir is not None:
        output = dataclasses.replace(output, base_dir=str(output_dir))
    tracker = config.tracker
    if failure_policy:
        tracker = dataclasses.replace(tracker, failure_policy=FailurePolicy(failure_policy))
    log = config.log
    if log_level:
        log = dataclasses.replace(log, level=log_level)

    return dataclasses.replace(config, resources=resources, pods=pods, output=output, tracker=tracker, log=log)


@cli.command("diff")
@click.argument("old", type=click.File("rb"))
@click.argument("new", type=click.File("rb"))
def diff_command(old: BinaryIO, new: BinaryIO) -> None:
    """Print the changes between two JSON documents OLD and NEW."""
    try:
        report = diff(old.read(), new.read())
    except MalformedInputError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(report.render())
