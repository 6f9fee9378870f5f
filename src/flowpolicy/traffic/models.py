"""Traffic data models — flow records and the identities they point at."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union


class Direction(enum.Enum):
    """Direction of a flow relative to the profiled pod."""

    INGRESS = "INGRESS"
    EGRESS = "EGRESS"


class Protocol(enum.Enum):
    """L4 protocols a network policy can name."""

    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"


@dataclass(frozen=True)
class TrafficRecord:
    """A single observed flow between the target pod and a peer.

    ``target_port`` is the port on the target pod and only matters for
    ingress; ``peer_port`` is the port on the remote side and only matters
    for egress. ``protocol`` and ``direction`` are kept as the broker sent
    them and are normalized during aggregation.
    """

    target_pod_name: str
    target_ip: str
    peer_ip: str
    direction: str
    protocol: str = "TCP"
    target_port: str = ""
    peer_port: str = ""
    target_namespace: str = ""
    uuid: str = ""

    @classmethod
    def from_broker(cls, data: dict[str, Any]) -> TrafficRecord:
        return cls(
            target_pod_name=_text(data.get("pod_name")),
            target_ip=_text(data.get("pod_ip")),
            target_namespace=_text(data.get("pod_namespace")),
            target_port=_text(data.get("pod_port")),
            direction=_text(data.get("traffic_type")),
            peer_ip=_text(data.get("traffic_in_out_ip")),
            peer_port=_text(data.get("traffic_in_out_port")),
            protocol=_text(data.get("ip_protocol")),
            uuid=_text(data.get("uuid")),
        )


@dataclass(frozen=True)
class OwnerReference:
    """The nearest controller owning an object."""

    kind: str
    name: str


@dataclass(frozen=True)
class PodIdentity:
    """What the cluster knows about the pod behind an IP."""

    namespace: str
    name: str
    ip: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owner: OwnerReference | None = None
    host_network: bool = False

    @classmethod
    def from_broker(cls, data: dict[str, Any]) -> PodIdentity:
        """Build from a broker ``pod_details`` row with an embedded Pod object."""
        pod_obj = data.get("pod_obj") or {}
        return cls.from_pod_object(
            pod_obj,
            name=_text(data.get("pod_name")),
            namespace=_text(data.get("pod_namespace")),
            ip=_text(data.get("pod_ip")),
        )

    @classmethod
    def from_pod_object(
        cls,
        pod_obj: dict[str, Any],
        name: str = "",
        namespace: str = "",
        ip: str = "",
    ) -> PodIdentity:
        """Build from a Kubernetes Pod in its JSON (camelCase) form."""
        metadata = pod_obj.get("metadata") or {}
        spec = pod_obj.get("spec") or {}
        status = pod_obj.get("status") or {}
        return cls(
            namespace=namespace or _text(metadata.get("namespace")),
            name=name or _text(metadata.get("name")),
            ip=ip or _text(status.get("podIP")),
            labels=dict(metadata.get("labels") or {}),
            owner=controller_owner(metadata.get("ownerReferences") or []),
            host_network=bool(spec.get("hostNetwork", False)),
        )


@dataclass(frozen=True)
class ServiceIdentity:
    """What the cluster knows about the service behind an IP."""

    namespace: str
    name: str
    ip: str = ""
    selector: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_broker(cls, data: dict[str, Any]) -> ServiceIdentity:
        service = data.get("service_spec") or {}
        metadata = service.get("metadata") or {}
        spec = service.get("spec") or {}
        return cls(
            namespace=_text(data.get("svc_namespace")) or _text(metadata.get("namespace")),
            name=_text(data.get("svc_name")) or _text(metadata.get("name")),
            ip=_text(data.get("svc_ip")),
            selector=dict(spec.get("selector") or {}),
        )


Identity = Union[PodIdentity, ServiceIdentity]


def controller_owner(refs: list[dict[str, Any]]) -> OwnerReference | None:
    """Pick the controlling owner reference, falling back to the first one."""
    if not refs:
        return None
    chosen = next((r for r in refs if r.get("controller")), refs[0])
    return OwnerReference(kind=_text(chosen.get("kind")), name=_text(chosen.get("name")))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
