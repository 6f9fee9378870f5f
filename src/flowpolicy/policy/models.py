"""Policy data models — rules, peers, and rendered policies."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import yaml

from flowpolicy.traffic.models import Direction, Protocol


class Schema(enum.Enum):
    """Target policy schema."""

    STANDARD = "standard"
    CILIUM = "cilium"

    @classmethod
    def parse(cls, value: str) -> Schema:
        """Accept ``kubernetes`` as an alias for the standard schema."""
        lowered = value.strip().lower()
        if lowered == "kubernetes":
            return cls.STANDARD
        return cls(lowered)


class PolicyKind(enum.Enum):
    """Directions a policy declares as enforced."""

    INGRESS = "Ingress"
    EGRESS = "Egress"


@dataclass(frozen=True)
class PortProtocol:
    """A port/protocol pair — the dedup key for rule ports."""

    port: int
    protocol: Protocol = Protocol.TCP


@dataclass(frozen=True)
class ResolvedSelector:
    """Canonical selector for an identity."""

    labels: dict[str, str]
    namespace: str


@dataclass(frozen=True)
class SelectorPeer:
    """A peer matched by pod labels within a namespace."""

    labels: dict[str, str]
    namespace: str


@dataclass(frozen=True)
class CIDRPeer:
    """A peer matched by a fixed host block."""

    cidr: str

    @classmethod
    def for_ip(cls, ip: str) -> CIDRPeer:
        return cls(cidr=f"{ip}/32")


Peer = Union[SelectorPeer, CIDRPeer]


@dataclass
class PolicyRule:
    """All ports observed between the target pod and one peer, in one direction."""

    peer_ip: str
    direction: Direction
    ports: list[PortProtocol] = field(default_factory=list)
    peer: Peer | None = None

    def add_port(self, port: PortProtocol) -> bool:
        """Add a port unless already present. Returns True when added."""
        if port in self.ports:
            return False
        self.ports.append(port)
        return True


@dataclass
class Policy:
    """A rendered policy for one pod in one schema."""

    name: str
    namespace: str
    schema: Schema
    pod_selector: dict[str, str]
    ingress: list[dict[str, Any]] = field(default_factory=list)
    egress: list[dict[str, Any]] = field(default_factory=list)
    policy_kinds: tuple[PolicyKind, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    default_deny: bool = False
    manifest: dict[str, Any] = field(default_factory=dict)

    def to_yaml(self) -> str:
        """Serialize the manifest as a YAML document."""
        result: str = yaml.safe_dump(
            self.manifest, default_flow_style=False, sort_keys=False
        )
        return result


@dataclass
class PolicyResult:
    """Outcome of generating (and writing) a policy for one pod."""

    pod_name: str
    policy: Policy | None = None
    error: Exception | None = None
    path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.policy is not None
