"""IP-to-peer resolution for policy rules.

Resolves a peer IP into something a policy can reference:
1. Service owning the IP, matched by the service's selector
2. Pod owning the IP, matched by its controller's (or its own) selector
3. Fallback to a ``/32`` CIDR block, treating the address as external

Pods on the host network are never matched by selector: their IP is the
node's IP, so a selector would scope the rule to the wrong workload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flowpolicy.errors import FlowPolicyError, ResolutionError
from flowpolicy.policy.models import CIDRPeer, Peer, PolicyRule, SelectorPeer
from flowpolicy.resolve.identity import IdentityResolver
from flowpolicy.sources import IdentitySource
from flowpolicy.traffic.models import Identity, PodIdentity, ServiceIdentity

logger = logging.getLogger(__name__)


@dataclass
class PeerResolver:
    """Resolves peer IPs to selector or CIDR peers.

    Resolution order:
      1. Service lookup by IP (selector must be non-empty)
      2. Pod lookup by IP (host-network pods become CIDR peers)
      3. ``<ip>/32`` CIDR block

    Never raises. Results are cached for the lifetime of the resolver, which
    is one policy-generation call.
    """

    identities: IdentitySource
    identity_resolver: IdentityResolver
    _cache: dict[str, Peer] = field(default_factory=dict)

    def resolve(self, ip: str) -> Peer:
        """Resolve a non-empty, non-self peer IP."""
        if ip in self._cache:
            return self._cache[ip]

        peer = self._do_resolve(ip)
        self._cache[ip] = peer
        return peer

    def resolve_rules(self, rules: list[PolicyRule]) -> list[PolicyRule]:
        """Attach a resolved peer to every rule."""
        for rule in rules:
            rule.peer = self.resolve(rule.peer_ip)
        return rules

    def _do_resolve(self, ip: str) -> Peer:
        # Step 1: Service
        svc = self._lookup_service(ip)
        if svc is not None:
            peer = self._selector_peer(svc)
            if peer is not None:
                logger.debug("Resolved IP %s to service %s/%s", ip, svc.namespace, svc.name)
                return peer
            logger.debug(
                "Service %s/%s found for IP %s but has no usable selector, trying pod",
                svc.namespace,
                svc.name,
                ip,
            )

        # Step 2: Pod
        pod = self._lookup_pod(ip)
        if pod is not None:
            if pod.host_network:
                logger.debug(
                    "Pod %s/%s uses hostNetwork, treating %s as a node IP",
                    pod.namespace,
                    pod.name,
                    ip,
                )
                return CIDRPeer.for_ip(ip)
            peer = self._selector_peer(pod)
            if peer is not None:
                logger.debug("Resolved IP %s to pod %s/%s", ip, pod.namespace, pod.name)
                return peer

        # Step 3: External
        logger.debug("Using CIDR block for peer %s", ip)
        return CIDRPeer.for_ip(ip)

    def _selector_peer(self, identity: Identity) -> SelectorPeer | None:
        try:
            selector = self.identity_resolver.resolve_selector(identity)
        except ResolutionError as exc:
            logger.debug("Could not resolve selector for %s: %s", identity.name, exc)
            return None
        except FlowPolicyError as exc:
            logger.debug("Owner lookup failed for %s: %s", identity.name, exc)
            return None
        if not selector.labels:
            return None
        return SelectorPeer(labels=selector.labels, namespace=selector.namespace)

    def _lookup_service(self, ip: str) -> ServiceIdentity | None:
        try:
            return self.identities.fetch_service_identity(ip)
        except FlowPolicyError as exc:
            logger.debug("Service lookup failed for IP %s: %s", ip, exc)
            return None

    def _lookup_pod(self, ip: str) -> PodIdentity | None:
        try:
            return self.identities.fetch_pod_identity(ip)
        except FlowPolicyError as exc:
            logger.debug("Pod lookup failed for IP %s: %s", ip, exc)
            return None
