"""CLI commands: flowpolicy gen networkpolicy|seccomp — generate from recorded data."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from flowpolicy.broker import BrokerClient
from flowpolicy.config import AdvisorConfig
from flowpolicy.errors import FlowPolicyError
from flowpolicy.kube.cluster import KubeClient
from flowpolicy.kube.portforward import BrokerTunnel
from flowpolicy.output import PolicyWriter
from flowpolicy.policy.models import PolicyResult, Schema
from flowpolicy.policy.service import PolicyService
from flowpolicy.seccomp import DEFAULT_ACTION, DEFAULT_ACTIONS, build_profile, validate_profile
from flowpolicy.traffic.models import PodIdentity

logger = logging.getLogger(__name__)

console = Console(stderr=True)


@click.group()
def gen() -> None:
    """Generate security resources from recorded pod activity."""


def _pod_selection(func):  # type: ignore[no-untyped-def]
    func = click.option(
        "--all-namespaces",
        "-A",
        is_flag=True,
        help="Generate for every running pod in every namespace.",
    )(func)
    func = click.option(
        "--all",
        "-a",
        "all_pods",
        is_flag=True,
        help="Generate for every running pod in the namespace.",
    )(func)
    func = click.option(
        "--namespace",
        "-n",
        default=None,
        help="Namespace of the pod(s). Defaults to the current context's namespace.",
    )(func)
    func = click.argument("pod", required=False)(func)
    return func


@gen.command("networkpolicy")
@_pod_selection
@click.option(
    "--type",
    "-t",
    "policy_type",
    type=click.Choice(["kubernetes", "standard", "cilium"], case_sensitive=False),
    default="kubernetes",
    show_default=True,
    help="Policy schema to generate.",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=True,
    show_default=True,
    help="Only generate policies, never apply them.",
)
@click.option(
    "--output-dir",
    default="network-policies",
    show_default=True,
    help="Directory for generated policies. Pass an empty string to print them instead.",
)
@click.option("--workers", type=int, default=None, help="Number of pods processed concurrently.")
@click.pass_context
def networkpolicy(
    ctx: click.Context,
    pod: str | None,
    namespace: str | None,
    all_pods: bool,
    all_namespaces: bool,
    policy_type: str,
    dry_run: bool,
    output_dir: str,
    workers: int | None,
) -> None:
    """Generate network policies for POD (or all pods) from recorded traffic."""
    config = _config(ctx)
    config.dry_run = dry_run
    config.output_dir = Path(output_dir) if output_dir else None
    if workers is not None:
        if workers < 1:
            raise click.BadParameter("must be at least 1", param_hint="--workers")
        config.max_workers = workers
    _check_selection(pod, all_pods, all_namespaces)
    schema = Schema.parse(policy_type)

    try:
        kube = KubeClient(config)
        pods = _select_pods(kube, pod, namespace, all_namespaces)
        if not pods:
            console.print("[yellow]No running pods found.[/yellow]")
            sys.exit(1)

        writer = _writer(config.output_dir) if config.output_dir else None
        console.print(
            f"[bold]flowpolicy[/bold] generating [cyan]{schema.value}[/cyan] "
            f"policies for {len(pods)} pod(s)"
        )
        with _broker_session(config, kube) as broker:
            service = PolicyService(config, broker, broker, kube, writer, pod_lookup=kube)
            results, first_error = service.generate_policies(
                [p.name for p in pods],
                schema,
                namespaces={p.name: p.namespace for p in pods},
            )
    except FlowPolicyError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    _print_results(results, "Network policies")
    if first_error is not None and (pod or all(not r.ok for r in results)):
        sys.exit(1)


@gen.command("seccomp")
@_pod_selection
@click.option(
    "--default-action",
    type=click.Choice(DEFAULT_ACTIONS),
    default=DEFAULT_ACTION,
    show_default=True,
    help="Action for syscalls that were never recorded.",
)
@click.option(
    "--output-dir",
    default="seccomp-profiles",
    show_default=True,
    help="Directory for generated profiles.",
)
@click.pass_context
def seccomp(
    ctx: click.Context,
    pod: str | None,
    namespace: str | None,
    all_pods: bool,
    all_namespaces: bool,
    default_action: str,
    output_dir: str,
) -> None:
    """Generate seccomp profiles for POD (or all pods) from recorded syscalls."""
    config = _config(ctx)
    _check_selection(pod, all_pods, all_namespaces)

    results: list[PolicyResult] = []
    try:
        kube = KubeClient(config)
        pods = _select_pods(kube, pod, namespace, all_namespaces)
        writer = _writer(Path(output_dir or "seccomp-profiles"))
        with _broker_session(config, kube) as broker:
            for target in pods:
                result = PolicyResult(pod_name=target.name)
                try:
                    recorded = broker.fetch_pod_syscalls(target.name)
                    if recorded is None:
                        raise FlowPolicyError(f"No syscall data found for pod {target.name}")
                    profile = build_profile(recorded, default_action)
                    validate_profile(profile)
                    result.path = writer.write(
                        target.namespace, target.name, "seccomp", profile.to_json(), ext="json"
                    )
                except (FlowPolicyError, ValueError, OSError) as exc:
                    logger.error("Error generating seccomp profile for pod %s: %s", target.name, exc)
                    result.error = exc
                results.append(result)
    except FlowPolicyError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    _print_results(results, "Seccomp profiles")
    if results and all(r.error is not None for r in results):
        sys.exit(1)


gen.add_command(networkpolicy, name="netpol")


def _config(ctx: click.Context) -> AdvisorConfig:
    ctx.ensure_object(dict)
    config = ctx.obj.get("config")
    if config is None:
        config = AdvisorConfig.load()
        ctx.obj["config"] = config
    return config


def _check_selection(pod: str | None, all_pods: bool, all_namespaces: bool) -> None:
    if pod and (all_pods or all_namespaces):
        raise click.UsageError("Specify either a pod name or --all/--all-namespaces, not both.")
    if not pod and not all_pods and not all_namespaces:
        raise click.UsageError("Specify a pod name, --all or --all-namespaces.")


def _select_pods(
    kube: KubeClient,
    pod: str | None,
    namespace: str | None,
    all_namespaces: bool,
) -> list[PodIdentity]:
    if all_namespaces:
        return kube.list_running_pods(None)
    namespace = namespace or kube.current_namespace()
    if pod:
        return [PodIdentity(namespace=namespace, name=pod)]
    return kube.list_running_pods(namespace)


def _writer(output_dir: Path) -> PolicyWriter:
    writer = PolicyWriter(output_dir)
    try:
        writer.prepare()
    except OSError as exc:
        raise FlowPolicyError(f"Failed to create output directory {output_dir}: {exc}") from exc
    return writer


@contextmanager
def _broker_session(config: AdvisorConfig, kube: KubeClient) -> Iterator[BrokerClient]:
    with ExitStack() as stack:
        if config.port_forward:
            tunnel = stack.enter_context(BrokerTunnel(config, kube))
            config.broker_url = tunnel.local_url
        broker = BrokerClient(config.broker_url, timeout=config.request_timeout)
        stack.callback(broker.close)
        yield broker


def _print_results(results: list[PolicyResult], title: str) -> None:
    table = Table(title=title, show_lines=False)
    table.add_column("Pod", style="cyan")
    table.add_column("Status", style="bold", width=8)
    table.add_column("Output")

    for result in results:
        if result.error is None:
            status = "[green]ok[/green]"
            detail = str(result.path) if result.path else (result.policy.name if result.policy else "")
        else:
            status = "[red]failed[/red]"
            detail = str(result.error)
        table.add_row(result.pod_name, status, detail)

    console.print(table)
    failed = sum(1 for r in results if r.error is not None)
    console.print(f"\nGenerated {len(results) - failed} of {len(results)}")
