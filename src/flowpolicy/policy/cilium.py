"""Cilium renderer — ``cilium.io/v2`` CiliumNetworkPolicy.

Structurally parallel to the standard renderer: one ingress/egress entry per
peer. Selector peers become a single endpoint selector whose labels carry the
namespace as ``k8s:io.kubernetes.pod.namespace``; CIDR peers become
``fromCIDR``/``toCIDR``. Enforced directions are declared through
``enableDefaultDeny``, Cilium's counterpart of ``policyTypes``.
"""

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
    Policy,
    PolicyKind,
    PolicyRule,
    PortProtocol,
    Schema,
    SelectorPeer,
)
from flowpolicy.traffic.models import PodIdentity

logger = logging.getLogger(__name__)

API_VERSION = "cilium.io/v2"
KIND = "CiliumNetworkPolicy"
NAMESPACE_LABEL = "k8s:io.kubernetes.pod.namespace"


class CiliumRenderer:
    """Renders rules as a CiliumNetworkPolicy."""

    schema = Schema.CILIUM

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
        ingress_entries = [self._entry(r, "fromEndpoints", "fromCIDR") for r in ingress]
        egress_entries = [self._entry(r, "toEndpoints", "toCIDR") for r in egress]

        spec: dict[str, Any] = {
            "description": f"Cilium network policy for pod {target.name}",
            "endpointSelector": {"matchLabels": dict(target_selector)},
            "enableDefaultDeny": {
                "ingress": PolicyKind.INGRESS in kinds,
                "egress": PolicyKind.EGRESS in kinds,
            },
        }
        if PolicyKind.INGRESS in kinds:
            spec["ingress"] = ingress_entries
        if PolicyKind.EGRESS in kinds:
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

    def _entry(self, rule: PolicyRule, endpoints_key: str, cidr_key: str) -> dict[str, Any]:
        require_resolved(rule)
        entry: dict[str, Any] = {}
        peer = rule.peer
        if isinstance(peer, SelectorPeer):
            entry[endpoints_key] = [endpoint_selector(peer)]
        elif isinstance(peer, CIDRPeer):
            entry[cidr_key] = [peer.cidr]
        else:
            raise ValueError(f"Unsupported peer: {peer!r}")
        entry["toPorts"] = [{"ports": port_protocols(rule.ports)}]
        return entry


def endpoint_selector(peer: SelectorPeer) -> dict[str, Any]:
    match_labels = dict(peer.labels)
    if peer.namespace:
        match_labels[NAMESPACE_LABEL] = peer.namespace
    return {"matchLabels": match_labels}


def port_protocols(ports: list[PortProtocol]) -> list[dict[str, str]]:
    return [{"port": str(p.port), "protocol": p.protocol.value} for p in ports]
