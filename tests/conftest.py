"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from flowpolicy.config import AdvisorConfig
from flowpolicy.sources import OwnerObject
from flowpolicy.traffic.models import (
    OwnerReference,
    PodIdentity,
    ServiceIdentity,
    TrafficRecord,
)


@dataclass
class FakeBroker:
    """In-memory broker: flows by pod name, identities by IP."""

    flows: dict[str, list[TrafficRecord]] = field(default_factory=dict)
    pods: dict[str, PodIdentity] = field(default_factory=dict)
    services: dict[str, ServiceIdentity] = field(default_factory=dict)
    failing_pods: dict[str, Exception] = field(default_factory=dict)

    def fetch_flow_records(self, pod_name: str) -> list[TrafficRecord]:
        if pod_name in self.failing_pods:
            raise self.failing_pods[pod_name]
        return list(self.flows.get(pod_name, []))

    def fetch_pod_identity(self, ip: str) -> PodIdentity | None:
        return self.pods.get(ip)

    def fetch_service_identity(self, ip: str) -> ServiceIdentity | None:
        return self.services.get(ip)


@dataclass
class FakeCluster:
    """In-memory owner and pod lookups."""

    owners: dict[tuple[str, str, str], OwnerObject] = field(default_factory=dict)
    pods: dict[tuple[str, str], PodIdentity] = field(default_factory=dict)

    def add_owner(
        self,
        namespace: str,
        kind: str,
        name: str,
        match_labels: dict[str, str],
        owner: OwnerReference | None = None,
    ) -> None:
        self.owners[(namespace, kind, name)] = OwnerObject(
            kind=kind,
            name=name,
            namespace=namespace,
            match_labels=match_labels,
            owner=owner,
        )

    def fetch_owner(self, namespace: str, kind: str, name: str) -> OwnerObject | None:
        return self.owners.get((namespace, kind, name))

    def fetch_pod(self, namespace: str, name: str) -> PodIdentity | None:
        return self.pods.get((namespace, name))


def _flow(
    direction: str,
    peer_ip: str,
    port: str | int = "",
    *,
    pod: str = "web-7d4b9c-abcde",
    pod_ip: str = "10.0.0.5",
    protocol: str = "TCP",
    target_port: str | int = "",
) -> TrafficRecord:
    """Build a flow record; ``port`` is the port that matters for the direction."""
    if direction.upper() == "INGRESS":
        target_port, peer_port = (target_port or port), ""
    else:
        peer_port = port
    return TrafficRecord(
        target_pod_name=pod,
        target_ip=pod_ip,
        target_namespace="default",
        peer_ip=peer_ip,
        direction=direction,
        protocol=protocol,
        target_port=str(target_port),
        peer_port=str(peer_port),
    )


@pytest.fixture
def flow():
    return _flow


@pytest.fixture
def config() -> AdvisorConfig:
    return AdvisorConfig(output_dir=None, max_workers=2)


@pytest.fixture
def web_pod() -> PodIdentity:
    return PodIdentity(
        namespace="default",
        name="web-7d4b9c-abcde",
        ip="10.0.0.5",
        labels={"app": "web", "pod-template-hash": "7d4b9c"},
        owner=OwnerReference(kind="ReplicaSet", name="web-7d4b9c"),
    )


@pytest.fixture
def cluster() -> FakeCluster:
    cluster = FakeCluster()
    cluster.add_owner(
        "default",
        "ReplicaSet",
        "web-7d4b9c",
        {"app": "web", "pod-template-hash": "7d4b9c"},
        owner=OwnerReference(kind="Deployment", name="web"),
    )
    cluster.add_owner("default", "Deployment", "web", {"app": "web"})
    return cluster


@pytest.fixture
def broker(web_pod: PodIdentity) -> FakeBroker:
    return FakeBroker(pods={web_pod.ip: web_pod})
