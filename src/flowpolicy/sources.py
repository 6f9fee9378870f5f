"""Collaborator protocols — what the engine needs from the broker and the cluster."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from flowpolicy.traffic.models import (
    OwnerReference,
    PodIdentity,
    ServiceIdentity,
    TrafficRecord,
)


@dataclass(frozen=True)
class OwnerObject:
    """A controller in a pod's owner chain, reduced to its selector."""

    kind: str
    name: str
    namespace: str
    match_labels: dict[str, str] = field(default_factory=dict)
    owner: OwnerReference | None = None


@runtime_checkable
class FlowSource(Protocol):
    """Source of recorded flows for a pod."""

    def fetch_flow_records(self, pod_name: str) -> list[TrafficRecord]:
        """Return every recorded flow referencing the pod (empty if none)."""
        ...


@runtime_checkable
class IdentitySource(Protocol):
    """IP-to-identity lookups. Both return None when nothing owns the IP."""

    def fetch_pod_identity(self, ip: str) -> PodIdentity | None:
        ...

    def fetch_service_identity(self, ip: str) -> ServiceIdentity | None:
        ...


@runtime_checkable
class OwnerLookup(Protocol):
    """Controller lookups used to walk a pod's owner chain."""

    def fetch_owner(self, namespace: str, kind: str, name: str) -> OwnerObject | None:
        """Return the controller, or None if it no longer exists."""
        ...


@runtime_checkable
class PodLookup(Protocol):
    """Direct pod lookup by name, used when a pod has no recorded flows."""

    def fetch_pod(self, namespace: str, name: str) -> PodIdentity | None:
        ...
