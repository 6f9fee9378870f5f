"""HTTP client for the flow-data broker."""

from flowpolicy.broker.client import BrokerClient

__all__ = ["BrokerClient"]
