#!/usr/bin/env python3
"""
CLI tool for stageply
Applies YAML declarations to a cluster in stages and prunes what was dropped
"""

import asyncio
import json
import logging
import os
from dataclasses import replace
from typing import Optional

import click
import yaml
from tabulate import tabulate

from config import get_config
from decoder import object_ref
from errors import ReconcileError
from inventory import Inventory
from managers.kube import KubernetesResourceManager
from reconciler import ApplyOptions, DeleteOptions, Reconciler
from stages import get_resource_stages


def _setup_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_config().log.log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _read_text(filename: str) -> str:
    with open(filename, "r") as f:
        return f.read()


def load_inventory(path: str) -> Optional[Inventory]:
    """Load a stored inventory, or None if the file does not exist yet."""
    if not os.path.exists(path):
        return None

    text = _read_text(path)
    if path.endswith(".yaml") or path.endswith(".yml"):
        return Inventory.from_yaml(text)
    return Inventory.from_json(text)


def save_inventory(path: str, inventory: Inventory) -> None:
    """Write an inventory as YAML or JSON depending on the file extension."""
    with open(path, "w") as f:
        if path.endswith(".yaml") or path.endswith(".yml"):
            yaml.safe_dump(inventory.to_dict(), f, default_flow_style=False)
        else:
            f.write(inventory.to_json())


def _build_reconciler(kubeconfig: Optional[str], context: Optional[str]) -> Reconciler:
    cfg = get_config()
    kube = replace(
        cfg.kube,
        kubeconfig=kubeconfig or cfg.kube.kubeconfig,
        context=context or cfg.kube.context,
    )

    manager = KubernetesResourceManager.from_config(
        kube, field_manager=cfg.reconcile.field_manager
    )
    return Reconciler(manager, log_func=click.echo, config=cfg.reconcile)


def _print_changes(reconciler: Reconciler) -> None:
    rows = []
    for phase, change_set in reconciler.last_change_sets.items():
        for entry in change_set.entries:
            rows.append([phase, entry.subject, entry.action.value])
    if rows:
        click.echo(
            tabulate(rows, headers=["Phase", "Object", "Action"], tablefmt="simple")
        )


def _inventory_rows(inventory: Inventory):
    return [
        [item.kind, item.namespace or "-", item.name, item.api_version]
        for item in inventory
    ]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """stageply - staged apply and prune for cluster declarations"""
    _setup_logging(verbose)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option(
    "--inventory",
    "inventory_path",
    type=click.Path(),
    help="Inventory file to read and update",
)
@click.option("--timeout", type=float, default=None, help="Wait timeout in seconds")
@click.option("--skip-wait", is_flag=True, help="Do not wait for stage two or pruning")
@click.option("--kubeconfig", type=click.Path(), default=None)
@click.option("--context", default=None, help="Kubeconfig context to use")
def apply(filename, inventory_path, timeout, skip_wait, kubeconfig, context):
    """Apply a declaration, pruning objects dropped since the last apply"""
    text = _read_text(filename)
    try:
        previous = load_inventory(inventory_path) if inventory_path else None
    except ReconcileError as e:
        raise click.ClickException(str(e))

    reconciler = _build_reconciler(kubeconfig, context)
    opts = ApplyOptions(wait_timeout=timeout, skip_wait=skip_wait)

    try:
        inventory = asyncio.run(reconciler.reconcile(text, opts, previous))
    except ReconcileError as e:
        _print_changes(reconciler)
        raise click.ClickException(str(e))

    _print_changes(reconciler)
    if inventory_path:
        save_inventory(inventory_path, inventory)
        click.echo(f"Inventory written to {inventory_path}")
    click.echo(f"Applied {len(inventory)} objects")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--timeout", type=float, default=None, help="Wait timeout in seconds")
@click.option("--skip-wait", is_flag=True, help="Do not wait for termination")
@click.option("--kubeconfig", type=click.Path(), default=None)
@click.option("--context", default=None, help="Kubeconfig context to use")
@click.confirmation_option(prompt="Are you sure you want to delete these objects?")
def delete(filename, timeout, skip_wait, kubeconfig, context):
    """Delete every object in a declaration"""
    text = _read_text(filename)
    reconciler = _build_reconciler(kubeconfig, context)
    opts = DeleteOptions(wait_timeout=timeout, skip_wait=skip_wait)

    try:
        asyncio.run(reconciler.delete(text, opts))
    except ReconcileError as e:
        _print_changes(reconciler)
        raise click.ClickException(str(e))

    _print_changes(reconciler)
    click.echo("Objects deleted")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Choice(["table", "yaml"]), default="table")
def stages(filename, output):
    """Show how a declaration is split into apply stages"""
    try:
        staged = get_resource_stages(_read_text(filename))
    except ReconcileError as e:
        raise click.ClickException(str(e))

    if output == "yaml":
        data = {
            "stageOne": [object_ref(o) for o in staged.stage_one],
            "stageTwo": [object_ref(o) for o in staged.stage_two],
        }
        click.echo(yaml.dump(data, default_flow_style=False))
        return

    rows = [[1, object_ref(o)] for o in staged.stage_one]
    rows += [[2, object_ref(o)] for o in staged.stage_two]
    click.echo(tabulate(rows, headers=["Stage", "Object"], tablefmt="simple"))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option(
    "--inventory", "inventory_path", type=click.Path(exists=True), required=True
)
def diff(filename, inventory_path):
    """Show which objects the next apply would prune"""
    try:
        previous = load_inventory(inventory_path)
        staged = get_resource_stages(_read_text(filename))
    except ReconcileError as e:
        raise click.ClickException(str(e))

    to_remove = previous.items_to_remove(Inventory.build(staged.all_objects()))
    if not to_remove:
        click.echo("Nothing to prune")
        return

    for ref in to_remove:
        click.echo(f"- {object_ref(ref)}")


@cli.command("inventory")
@click.argument("path", type=click.Path(exists=True))
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
def show_inventory(path, output):
    """Show a stored inventory"""
    try:
        inventory = load_inventory(path)
    except ReconcileError as e:
        raise click.ClickException(str(e))

    if output == "json":
        click.echo(json.dumps(inventory.to_dict(), indent=2))
    elif output == "yaml":
        click.echo(yaml.dump(inventory.to_dict(), default_flow_style=False))
    else:
        click.echo(
            tabulate(
                _inventory_rows(inventory),
                headers=["Kind", "Namespace", "Name", "APIVersion"],
                tablefmt="grid",
            )
        )


if __name__ == "__main__":
    cli()
