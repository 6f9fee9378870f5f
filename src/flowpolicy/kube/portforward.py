"""Broker tunnel — ``kubectl port-forward`` to the broker service."""

from __future__ import annotations

import logging
import shutil
import socket
import subprocess
import time
from types import TracebackType

from flowpolicy.config import AdvisorConfig
from flowpolicy.errors import PortForwardError
from flowpolicy.kube.cluster import KubeClient

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2
_LOCAL_HOST = "127.0.0.1"


class BrokerTunnel:
    """Forwards a local port to the broker service for the life of the tunnel.

    The broker is looked for in ``config.broker_namespace`` first, then in
    ``config.fallback_namespace``. Use as a context manager so the
    port-forward process is always terminated.
    """

    def __init__(self, config: AdvisorConfig, kube: KubeClient) -> None:
        self._config = config
        self._kube = kube
        self._proc: subprocess.Popen[bytes] | None = None
        self.namespace: str | None = None

    @property
    def local_url(self) -> str:
        return f"http://{_LOCAL_HOST}:{self._config.broker_port}"

    def open(self) -> str:
        """Start the port-forward and wait until it accepts connections."""
        kubectl = shutil.which("kubectl")
        if kubectl is None:
            raise PortForwardError("kubectl not found on PATH")

        namespaces = [self._config.broker_namespace]
        if self._config.fallback_namespace not in namespaces:
            namespaces.append(self._config.fallback_namespace)
        namespace = self._kube.find_service_namespace(self._config.broker_service, namespaces)
        if namespace is None:
            raise PortForwardError(
                f"Service {self._config.broker_service} not found in "
                f"namespaces {', '.join(namespaces)}"
            )
        self.namespace = namespace

        port = self._config.broker_port
        cmd = [kubectl, "port-forward", "-n", namespace, f"svc/{self._config.broker_service}", f"{port}:{port}"]
        if self._config.kubeconfig:
            cmd[1:1] = ["--kubeconfig", self._config.kubeconfig]
        if self._config.context:
            cmd[1:1] = ["--context", self._config.context]

        logger.info("Starting port-forward to %s/%s on port %d", namespace, self._config.broker_service, port)
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise PortForwardError(f"Failed to start kubectl port-forward: {exc}") from exc

        self._wait_ready(port)
        return self.local_url

    def _wait_ready(self, port: int) -> None:
        deadline = time.monotonic() + self._config.port_forward_timeout
        while time.monotonic() < deadline:
            assert self._proc is not None
            if self._proc.poll() is not None:
                stderr = self._proc.stderr.read().decode(errors="replace") if self._proc.stderr else ""
                self._proc = None
                raise PortForwardError(f"kubectl port-forward exited early: {stderr.strip()}")
            try:
                with socket.create_connection((_LOCAL_HOST, port), timeout=_POLL_INTERVAL):
                    logger.debug("Port-forward ready on %s:%d", _LOCAL_HOST, port)
                    return
            except OSError:
                time.sleep(_POLL_INTERVAL)

        self.close()
        raise PortForwardError(
            f"Port-forward not ready after {self._config.port_forward_timeout}s"
        )

    def close(self) -> None:
        if self._proc is None:
            return
        self._proc.terminate()
        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("Port-forward did not exit, killing it")
            self._proc.kill()
            self._proc.wait()
        if self._proc.stderr:
            self._proc.stderr.close()
        self._proc = None
        logger.debug("Port-forward stopped")

    def __enter__(self) -> BrokerTunnel:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
