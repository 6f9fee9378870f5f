"""Exception hierarchy shared by the engine, the collaborators, and the CLI."""

from __future__ import annotations


class FlowPolicyError(Exception):
    """Base exception for flowpolicy."""


class ResolutionError(FlowPolicyError):
    """An identity could not be turned into a label selector."""


class NoSelectorError(ResolutionError):
    """The service or controller has no selector labels."""


class UnsupportedOwnerKindError(ResolutionError):
    """The pod is owned by a controller kind we cannot derive a selector from."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unsupported owner kind: {kind}")
        self.kind = kind


class StaleReferenceError(ResolutionError):
    """An object in the owner chain no longer exists."""

    def __init__(self, namespace: str, kind: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.namespace = namespace
        self.kind = kind
        self.name = name


class BrokerError(FlowPolicyError):
    """The flow-data broker could not be reached or returned garbage."""


class KubernetesError(FlowPolicyError):
    """Kubernetes API failure unrelated to a missing object."""


class PortForwardError(FlowPolicyError):
    """The tunnel to the broker could not be established."""


class InvalidRecordError(FlowPolicyError, ValueError):
    """A single flow record is malformed and must be dropped."""
