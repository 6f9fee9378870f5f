"""Helpers shared by the Standard and Cilium renderers."""

from __future__ import annotations

import logging
from typing import Protocol

from flowpolicy import __version__
from flowpolicy.errors import FlowPolicyError
from flowpolicy.policy.models import Policy, PolicyKind, PolicyRule, Schema
from flowpolicy.resolve.identity import IdentityResolver
from flowpolicy.traffic.models import PodIdentity

logger = logging.getLogger(__name__)

PART_OF = "flowpolicy"


class PolicyRenderer(Protocol):
    """Turns resolved rules into a schema-specific policy."""

    schema: Schema

    def render(
        self,
        target: PodIdentity,
        target_selector: dict[str, str],
        ingress: list[PolicyRule],
        egress: list[PolicyRule],
    ) -> Policy:
        ...


def component_name(schema: Schema, deny_all: bool = False) -> str:
    suffix = "-deny-all" if deny_all else ""
    return f"{schema.value}-policy{suffix}"


def policy_name(pod_name: str, schema: Schema, deny_all: bool = False) -> str:
    return f"{pod_name}-{component_name(schema, deny_all)}"


def standard_labels(pod_name: str, component: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": pod_name,
        "app.kubernetes.io/component": component,
        "app.kubernetes.io/part-of": PART_OF,
        "app.kubernetes.io/version": __version__,
    }


def enforced_kinds(
    ingress: list[PolicyRule], egress: list[PolicyRule]
) -> tuple[PolicyKind, ...]:
    """Directions to declare: those with rules, or both when neither has any."""
    kinds: list[PolicyKind] = []
    if ingress:
        kinds.append(PolicyKind.INGRESS)
    if egress:
        kinds.append(PolicyKind.EGRESS)
    if not kinds:
        return (PolicyKind.INGRESS, PolicyKind.EGRESS)
    return tuple(kinds)


def resolve_target_selector(
    target: PodIdentity, resolver: IdentityResolver
) -> dict[str, str]:
    """Selector for the policy's own pod, never empty.

    An empty selector would match every pod in the namespace, so any failure
    falls back to ``{app: <pod name>}``.
    """
    try:
        selector = resolver.resolve_selector(target)
    except FlowPolicyError as exc:
        logger.warning(
            "Could not resolve selector for pod %s/%s (%s), using app=%s",
            target.namespace,
            target.name,
            exc,
            target.name,
        )
        return {"app": target.name}
    if not selector.labels:
        logger.warning("No selector labels found for pod %s, using app=%s", target.name, target.name)
        return {"app": target.name}
    return selector.labels


def require_resolved(rule: PolicyRule) -> None:
    if rule.peer is None:
        raise ValueError(f"Rule for peer {rule.peer_ip} has not been resolved")
