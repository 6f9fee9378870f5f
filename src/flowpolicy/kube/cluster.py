"""Kubernetes API access — pods, controllers, and the current namespace."""

from __future__ import annotations

import logging
import os
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from flowpolicy.config import AdvisorConfig
from flowpolicy.errors import KubernetesError
from flowpolicy.sources import OwnerObject
from flowpolicy.traffic.models import OwnerReference, PodIdentity

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


class KubeClient:
    """Read-only access to the objects policy generation needs.

    Implements the OwnerLookup and PodLookup protocols. A 404 is reported as
    None; every other API failure is a KubernetesError.
    """

    def __init__(
        self,
        cfg: AdvisorConfig,
        core_api: Any = None,
        apps_api: Any = None,
        batch_api: Any = None,
    ) -> None:
        self._cfg = cfg
        self._timeout = cfg.request_timeout
        if core_api is None or apps_api is None or batch_api is None:
            self._load_config()
        self._core = core_api or client.CoreV1Api()
        self._apps = apps_api or client.AppsV1Api()
        self._batch = batch_api or client.BatchV1Api()

    def _load_config(self) -> None:
        try:
            if self._cfg.in_cluster:
                config.load_incluster_config()
            else:
                config.load_kube_config(
                    config_file=self._cfg.kubeconfig,
                    context=self._cfg.context,
                )
        except (ConfigException, OSError) as exc:
            raise KubernetesError(f"Failed to load Kubernetes configuration: {exc}") from exc

    @property
    def core_api(self) -> Any:
        return self._core

    def current_namespace(self) -> str:
        """Namespace from POD_NAMESPACE, then the kubeconfig context, then ``default``."""
        env_ns = os.environ.get("POD_NAMESPACE")
        if env_ns:
            return env_ns
        if self._cfg.in_cluster:
            return DEFAULT_NAMESPACE
        try:
            _, active = config.list_kube_config_contexts(config_file=self._cfg.kubeconfig)
        except (ConfigException, OSError) as exc:
            logger.warning("Failed to read namespace from current context: %s", exc)
            return DEFAULT_NAMESPACE
        if self._cfg.context:
            contexts, _ = config.list_kube_config_contexts(config_file=self._cfg.kubeconfig)
            active = next((c for c in contexts if c.get("name") == self._cfg.context), active)
        namespace = ((active or {}).get("context") or {}).get("namespace")
        return namespace or DEFAULT_NAMESPACE

    def list_running_pods(self, namespace: str | None = None) -> list[PodIdentity]:
        """Running pods in one namespace, or in all namespaces when None."""
        try:
            if namespace is None:
                pods = self._core.list_pod_for_all_namespaces(_request_timeout=self._timeout)
            else:
                pods = self._core.list_namespaced_pod(namespace, _request_timeout=self._timeout)
        except ApiException as exc:
            raise KubernetesError(f"Error listing pods: {exc.reason}") from exc
        except HTTPError as exc:
            raise KubernetesError(f"Kubernetes API unreachable listing pods: {exc}") from exc

        running = [
            pod_identity(p) for p in pods.items if p.status and p.status.phase == "Running"
        ]
        logger.info(
            "Found %d running pods in %s",
            len(running),
            f"namespace {namespace}" if namespace else "all namespaces",
        )
        return running

    def fetch_pod(self, namespace: str, name: str) -> PodIdentity | None:
        try:
            pod = self._core.read_namespaced_pod(name, namespace, _request_timeout=self._timeout)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise KubernetesError(f"Error reading pod {namespace}/{name}: {exc.reason}") from exc
        except HTTPError as exc:
            raise KubernetesError(
                f"Kubernetes API unreachable reading pod {namespace}/{name}: {exc}"
            ) from exc
        return pod_identity(pod)

    def fetch_owner(self, namespace: str, kind: str, name: str) -> OwnerObject | None:
        readers = {
            "ReplicaSet": self._apps.read_namespaced_replica_set,
            "Deployment": self._apps.read_namespaced_deployment,
            "StatefulSet": self._apps.read_namespaced_stateful_set,
            "DaemonSet": self._apps.read_namespaced_daemon_set,
            "Job": self._batch.read_namespaced_job,
        }
        reader = readers.get(kind)
        if reader is None:
            raise KubernetesError(f"Cannot look up owner of kind {kind}")
        try:
            obj = reader(name, namespace, _request_timeout=self._timeout)
        except ApiException as exc:
            if exc.status == 404:
                logger.debug("%s %s/%s not found", kind, namespace, name)
                return None
            raise KubernetesError(
                f"Error reading {kind} {namespace}/{name}: {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise KubernetesError(
                f"Kubernetes API unreachable reading {kind} {namespace}/{name}: {exc}"
            ) from exc

        selector = obj.spec.selector if obj.spec else None
        return OwnerObject(
            kind=kind,
            name=name,
            namespace=namespace,
            match_labels=dict((selector.match_labels if selector else None) or {}),
            owner=_controller_ref(obj.metadata.owner_references or []),
        )

    def find_service_namespace(self, name: str, namespaces: list[str]) -> str | None:
        """First namespace in which the named service exists."""
        for namespace in namespaces:
            try:
                self._core.read_namespaced_service(
                    name, namespace, _request_timeout=self._timeout
                )
            except ApiException as exc:
                if exc.status == 404:
                    logger.debug("Service %s not found in %s", name, namespace)
                    continue
                raise KubernetesError(
                    f"Error reading service {namespace}/{name}: {exc.reason}"
                ) from exc
            except HTTPError as exc:
                raise KubernetesError(
                    f"Kubernetes API unreachable reading service {namespace}/{name}: {exc}"
                ) from exc
            return namespace
        return None


def pod_identity(pod: Any) -> PodIdentity:
    """Convert a ``V1Pod`` to a PodIdentity."""
    metadata = pod.metadata
    return PodIdentity(
        namespace=metadata.namespace or "",
        name=metadata.name or "",
        ip=(pod.status.pod_ip if pod.status else None) or "",
        labels=dict(metadata.labels or {}),
        owner=_controller_ref(metadata.owner_references or []),
        host_network=bool(pod.spec.host_network) if pod.spec else False,
    )


def _controller_ref(refs: list[Any]) -> OwnerReference | None:
    if not refs:
        return None
    chosen = next((r for r in refs if r.controller), refs[0])
    return OwnerReference(kind=chosen.kind, name=chosen.name)
