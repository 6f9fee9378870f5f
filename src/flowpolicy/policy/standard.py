"""Standard renderer — ``networking.k8s.io/v1`` NetworkPolicy."""

from __future__ import annotations

import logging
from typing import Any

from flowpolicy.policy.common import (
    component_name,
    enforced_kinds,
    policy_name,
    require_resolved,
    standard_labels,
)
from flowpolicy.policy.models import (
    CIDRPeer,
    Peer,
    Policy,
    PolicyKind,
    PolicyRule,
    PortProtocol,
    Schema,
    SelectorPeer,
)
from flowpolicy.traffic.models import PodIdentity

logger = logging.getLogger(__name__)

API_VERSION = "networking.k8s.io/v1"
KIND = "NetworkPolicy"
NAMESPACE_LABEL = "kubernetes.io/metadata.name"


class StandardRenderer:
    """Renders rules as a Kubernetes NetworkPolicy."""

    schema = Schema.STANDARD

    def render(
        self,
        target: PodIdentity,
        target_selector: dict[str, str],
        ingress: list[PolicyRule],
        egress: list[PolicyRule],
    ) -> Policy:
        deny_all = not ingress and not egress
        if deny_all:
            logger.warning(
                "No valid ingress or egress rules for pod %s, generating default-deny",
                target.name,
            )

        name = policy_name(target.name, self.schema, deny_all=deny_all)
        labels = standard_labels(target.name, component_name(self.schema, deny_all))
        kinds = enforced_kinds(ingress, egress)
        ingress_entries = [self._ingress_entry(r) for r in ingress]
        egress_entries = [self._egress_entry(r) for r in egress]

        spec: dict[str, Any] = {
            "podSelector": {"matchLabels": dict(target_selector)},
            "policyTypes": [k.value for k in kinds],
        }
        if deny_all or PolicyKind.INGRESS in kinds:
            spec["ingress"] = ingress_entries
        if deny_all or PolicyKind.EGRESS in kinds:
            spec["egress"] = egress_entries

        manifest = {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": {
                "name": name,
                "namespace": target.namespace,
                "labels": labels,
            },
            "spec": spec,
        }
        return Policy(
            name=name,
            namespace=target.namespace,
            schema=self.schema,
            pod_selector=dict(target_selector),
            ingress=ingress_entries,
            egress=egress_entries,
            policy_kinds=kinds,
            labels=labels,
            default_deny=deny_all,
            manifest=manifest,
        )

    def _ingress_entry(self, rule: PolicyRule) -> dict[str, Any]:
        require_resolved(rule)
        return {"from": [peer_descriptor(rule.peer)], "ports": port_list(rule.ports)}

    def _egress_entry(self, rule: PolicyRule) -> dict[str, Any]:
        require_resolved(rule)
        return {"to": [peer_descriptor(rule.peer)], "ports": port_list(rule.ports)}


def peer_descriptor(peer: Peer | None) -> dict[str, Any]:
    if isinstance(peer, SelectorPeer):
        return {
            "podSelector": {"matchLabels": dict(peer.labels)},
            "namespaceSelector": {"matchLabels": {NAMESPACE_LABEL: peer.namespace}},
        }
    if isinstance(peer, CIDRPeer):
        return {"ipBlock": {"cidr": peer.cidr}}
    raise ValueError(f"Unsupported peer: {peer!r}")


def port_list(ports: list[PortProtocol]) -> list[dict[str, Any]]:
    return [{"port": p.port, "protocol": p.protocol.value} for p in ports]
