"""Policy service — drives generation for one pod or a batch of pods."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import click

from flowpolicy.config import AdvisorConfig
from flowpolicy.errors import FlowPolicyError
from flowpolicy.output import PolicyWriter
from flowpolicy.policy.aggregator import aggregate
from flowpolicy.policy.cilium import CiliumRenderer
from flowpolicy.policy.common import PolicyRenderer, resolve_target_selector
from flowpolicy.policy.models import Policy, PolicyResult, Schema
from flowpolicy.policy.standard import StandardRenderer
from flowpolicy.resolve.identity import IdentityResolver
from flowpolicy.resolve.peer import PeerResolver
from flowpolicy.sources import FlowSource, IdentitySource, OwnerLookup, PodLookup
from flowpolicy.traffic.models import PodIdentity, TrafficRecord

logger = logging.getLogger(__name__)

RENDERERS: dict[Schema, PolicyRenderer] = {
    Schema.STANDARD: StandardRenderer(),
    Schema.CILIUM: CiliumRenderer(),
}


class PolicyService:
    """Generates policies from recorded flows.

    Each generation call gets its own PeerResolver, so identity lookups are
    consistent within a call and never shared between pods.
    """

    def __init__(
        self,
        config: AdvisorConfig,
        broker: FlowSource,
        identity_source: IdentitySource,
        owner_lookup: OwnerLookup,
        writer: PolicyWriter | None = None,
        pod_lookup: PodLookup | None = None,
    ) -> None:
        self._config = config
        self._broker = broker
        self._identities = identity_source
        self._identity_resolver = IdentityResolver(owner_lookup)
        self._writer = writer
        self._pods = pod_lookup
        self._print_lock = threading.Lock()

    def generate_policy(
        self,
        pod_name: str,
        schema: Schema,
        namespace: str | None = None,
    ) -> Policy:
        """Generate the policy for one pod.

        Raises:
            BrokerError: If the flow records could not be fetched.
            FlowPolicyError: If the target pod's identity cannot be found.
        """
        records = self._broker.fetch_flow_records(pod_name)
        target = self._find_target(pod_name, records, namespace)

        ingress, egress = aggregate(records, target)

        resolver = PeerResolver(self._identities, self._identity_resolver)
        resolver.resolve_rules(ingress)
        resolver.resolve_rules(egress)

        selector = resolve_target_selector(target, self._identity_resolver)
        policy = RENDERERS[schema].render(target, selector, ingress, egress)
        logger.info("Generated %s policy %s for pod %s", schema.value, policy.name, pod_name)
        return policy

    def generate_policies(
        self,
        pod_names: Sequence[str],
        schema: Schema,
        namespaces: Mapping[str, str] | None = None,
    ) -> tuple[list[PolicyResult], Exception | None]:
        """Generate and output policies for many pods concurrently.

        One pod's failure never stops the others. Results come back in input
        order, along with the first error in input order (or None).
        """
        namespaces = namespaces or {}
        if not pod_names:
            return [], None

        workers = max(1, min(self._config.max_workers, len(pod_names)))
        logger.info("Generating %s policies for %d pods with %d workers", schema.value, len(pod_names), workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(
                pool.map(
                    lambda name: self._generate_one(name, schema, namespaces.get(name)),
                    pod_names,
                )
            )

        first_error = next((r.error for r in results if r.error is not None), None)
        failed = sum(1 for r in results if r.error is not None)
        if failed:
            logger.warning("Failed to generate policies for %d of %d pods", failed, len(results))
        return results, first_error

    def _generate_one(self, pod_name: str, schema: Schema, namespace: str | None) -> PolicyResult:
        result = PolicyResult(pod_name=pod_name)
        try:
            result.policy = self.generate_policy(pod_name, schema, namespace)
            result.path = self.handle_output(result.policy, pod_name)
        except (FlowPolicyError, OSError) as exc:
            logger.error("Error generating policy for pod %s: %s", pod_name, exc)
            result.error = exc
        return result

    def handle_output(self, policy: Policy, pod_name: str | None = None) -> Path | None:
        """Write or print a generated policy according to the configuration."""
        pod_name = pod_name or policy.labels.get("app.kubernetes.io/name", policy.name)
        path: Path | None = None
        content = policy.to_yaml()

        if self._writer is not None:
            path = self._writer.write(
                policy.namespace,
                pod_name,
                f"{policy.schema.value}-networkpolicy",
                content,
            )
        elif self._config.dry_run:
            with self._print_lock:
                click.echo("---")
                click.echo(content, nl=False)

        if not self._config.dry_run:
            logger.warning(
                "Applying network policies is not implemented, %s was only generated",
                policy.name,
            )
        return path

    def _find_target(
        self,
        pod_name: str,
        records: list[TrafficRecord],
        namespace: str | None,
    ) -> PodIdentity:
        if not records:
            if self._pods is not None and namespace:
                target = self._pods.fetch_pod(namespace, pod_name)
                if target is not None:
                    logger.warning("No traffic data for pod %s, generating default-deny", pod_name)
                    return target
            raise FlowPolicyError(f"No traffic data found for pod {pod_name}")

        first = records[0]
        ip = first.target_ip or first.peer_ip
        target = self._identities.fetch_pod_identity(ip)
        if target is None:
            raise FlowPolicyError(f"Pod details not found for {pod_name} (IP {ip})")
        return target
