"""Flow-data broker client — flows, identities, and syscalls over HTTP.

The broker answers 404 when it holds no row for the requested key; that is
reported as "not found" (empty list or None). Anything else that goes wrong
is a BrokerError.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from flowpolicy.errors import BrokerError
from flowpolicy.seccomp import PodSyscalls
from flowpolicy.traffic.models import PodIdentity, ServiceIdentity, TrafficRecord

logger = logging.getLogger(__name__)

DEFAULT_BROKER_URL = "http://127.0.0.1:9090"


class BrokerClient:
    """Thin wrapper over a ``requests.Session`` pointed at the broker."""

    def __init__(
        self,
        base_url: str = DEFAULT_BROKER_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._session.close()

    def fetch_flow_records(self, pod_name: str) -> list[TrafficRecord]:
        data = self._get_json(f"/pod/traffic/{quote(pod_name, safe='')}")
        if data is None:
            return []
        if not isinstance(data, list):
            raise BrokerError(f"Expected a list of flow records for pod {pod_name}")
        records = [TrafficRecord.from_broker(row) for row in data if isinstance(row, dict)]
        logger.debug("Fetched %d flow records for pod %s", len(records), pod_name)
        return records

    def fetch_pod_identity(self, ip: str) -> PodIdentity | None:
        data = self._get_json(f"/pod/ip/{quote(ip, safe='')}")
        if not isinstance(data, dict):
            return None
        return PodIdentity.from_broker(data)

    def fetch_service_identity(self, ip: str) -> ServiceIdentity | None:
        data = self._get_json(f"/svc/ip/{quote(ip, safe='')}")
        if not isinstance(data, dict):
            return None
        return ServiceIdentity.from_broker(data)

    def fetch_pod_syscalls(self, pod_name: str) -> PodSyscalls | None:
        data = self._get_json(f"/pod/syscalls/{quote(pod_name, safe='')}")
        if not data or not isinstance(data, list):
            return None
        return PodSyscalls.from_broker(data[0])

    def _get_json(self, path: str) -> Any:
        url = self._base_url + path
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.Timeout as exc:
            raise BrokerError(f"Timed out after {self._timeout}s requesting {url}") from exc
        except requests.RequestException as exc:
            raise BrokerError(f"Error requesting {url}: {exc}") from exc

        if resp.status_code == 404:
            logger.debug("Broker has no data for %s", path)
            return None
        if resp.status_code != 200:
            raise BrokerError(f"Broker returned HTTP {resp.status_code} for {url}")

        try:
            return resp.json()
        except ValueError as exc:
            raise BrokerError(f"Broker returned invalid JSON for {url}") from exc
