"""Global configuration — broker location, timeouts, output, env vars."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class AdvisorConfig:
    """Configuration passed explicitly to every entry point."""

    broker_url: str = "http://127.0.0.1:9090"
    broker_namespace: str = "kube-guardian"
    broker_service: str = "broker"
    broker_port: int = 9090
    port_forward: bool = True
    fallback_namespace: str = "kube-system"
    request_timeout: float = 10.0
    port_forward_timeout: float = 30.0
    max_workers: int = 4
    output_dir: Path | None = Path("network-policies")
    dry_run: bool = True
    kubeconfig: str | None = None
    context: str | None = None
    in_cluster: bool = False
    verbose: bool = False
    debug: bool = False

    @classmethod
    def load(cls) -> AdvisorConfig:
        """Load config from environment variables on top of the defaults."""
        config = cls()

        env_url = os.environ.get("FLOWPOLICY_BROKER_URL")
        if env_url:
            config.broker_url = env_url.rstrip("/")
            config.port_forward = False

        env_ns = os.environ.get("KUBE_GUARDIAN_NAMESPACE")
        if env_ns:
            config.broker_namespace = env_ns

        env_timeout = os.environ.get("FLOWPOLICY_REQUEST_TIMEOUT")
        if env_timeout:
            config.request_timeout = float(env_timeout)

        env_workers = os.environ.get("FLOWPOLICY_MAX_WORKERS")
        if env_workers:
            config.max_workers = max(1, int(env_workers))

        if os.environ.get("FLOWPOLICY_DEBUG", "").lower() in _TRUTHY:
            config.debug = True

        return config
