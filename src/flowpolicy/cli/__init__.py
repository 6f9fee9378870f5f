"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from flowpolicy import __version__
from flowpolicy.config import AdvisorConfig


@click.group()
@click.version_option(version=__version__, prog_name="flowpolicy")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.option(
    "--kubeconfig",
    type=click.Path(),
    default=None,
    help="Path to the kubeconfig file.",
)
@click.option("--context", "kube_context", default=None, help="Kubeconfig context to use.")
@click.option(
    "--in-cluster",
    is_flag=True,
    help="Use the in-cluster service account instead of a kubeconfig.",
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    debug: bool,
    kubeconfig: str | None,
    kube_context: str | None,
    in_cluster: bool,
) -> None:
    """flowpolicy — network policies from observed pod traffic."""
    config = AdvisorConfig.load()
    config.verbose = config.verbose or verbose
    config.debug = config.debug or debug
    config.kubeconfig = kubeconfig
    config.context = kube_context
    config.in_cluster = in_cluster

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if config.debug:
        level = logging.DEBUG
    elif config.verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from flowpolicy.cli.gen import gen  # noqa: F811

    main.add_command(gen)


_register_commands()
