"""Identity resolver — canonical selector labels for a pod or a service.

Pods managed by a controller are matched through the controller's own
selector rather than the pod's labels: a Deployment's pods carry a
``pod-template-hash`` label that changes on every rollout, while the
Deployment's ``matchLabels`` stay stable.
"""

from __future__ import annotations

import logging

from flowpolicy.errors import (
    NoSelectorError,
    StaleReferenceError,
    UnsupportedOwnerKindError,
)
from flowpolicy.policy.models import ResolvedSelector
from flowpolicy.sources import OwnerLookup, OwnerObject
from flowpolicy.traffic.models import Identity, PodIdentity, ServiceIdentity

logger = logging.getLogger(__name__)

_DIRECT_CONTROLLERS = frozenset({"StatefulSet", "DaemonSet", "Job"})


class IdentityResolver:
    """Resolves identities to ``ResolvedSelector`` by walking owner chains."""

    def __init__(self, owners: OwnerLookup) -> None:
        self._owners = owners

    def resolve_selector(self, identity: Identity) -> ResolvedSelector:
        """Return the selector for a pod or service.

        Raises a ResolutionError subclass when no usable selector exists.
        """
        if isinstance(identity, ServiceIdentity):
            return self._resolve_service(identity)
        return self._resolve_pod(identity)

    def _resolve_service(self, svc: ServiceIdentity) -> ResolvedSelector:
        if not svc.selector:
            raise NoSelectorError(f"Service {svc.namespace}/{svc.name} has no selector")
        return ResolvedSelector(labels=dict(svc.selector), namespace=svc.namespace)

    def _resolve_pod(self, pod: PodIdentity) -> ResolvedSelector:
        owner = pod.owner
        if owner is None:
            return ResolvedSelector(labels=dict(pod.labels), namespace=pod.namespace)

        if owner.kind == "ReplicaSet":
            controller = self._deployment_for(pod.namespace, owner.name)
        elif owner.kind in _DIRECT_CONTROLLERS:
            controller = self._fetch(pod.namespace, owner.kind, owner.name)
        else:
            raise UnsupportedOwnerKindError(owner.kind)

        if not controller.match_labels:
            raise NoSelectorError(
                f"{controller.kind} {pod.namespace}/{controller.name} has no matchLabels"
            )
        logger.debug(
            "Pod %s/%s resolved through %s %s",
            pod.namespace,
            pod.name,
            controller.kind,
            controller.name,
        )
        return ResolvedSelector(
            labels=dict(controller.match_labels), namespace=pod.namespace
        )

    def _deployment_for(self, namespace: str, replica_set: str) -> OwnerObject:
        rs = self._fetch(namespace, "ReplicaSet", replica_set)
        if rs.owner is None:
            # Bare ReplicaSet, not managed by a Deployment.
            return rs
        if rs.owner.kind != "Deployment":
            raise UnsupportedOwnerKindError(rs.owner.kind)
        return self._fetch(namespace, "Deployment", rs.owner.name)

    def _fetch(self, namespace: str, kind: str, name: str) -> OwnerObject:
        obj = self._owners.fetch_owner(namespace, kind, name)
        if obj is None:
            raise StaleReferenceError(namespace, kind, name)
        return obj
