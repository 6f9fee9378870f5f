"""Tests for Kubernetes access and the broker tunnel."""

from __future__ import annotations

import subprocess
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from flowpolicy.config import AdvisorConfig
from flowpolicy.errors import KubernetesError, PortForwardError
from flowpolicy.kube.cluster import KubeClient, pod_identity
from flowpolicy.kube.portforward import BrokerTunnel
from flowpolicy.policy.models import Schema
from flowpolicy.policy.service import PolicyService
from flowpolicy.traffic.models import OwnerReference, PodIdentity


def _v1_pod(name: str, phase: str = "Running", host_network: bool = False, owners=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            namespace="default",
            labels={"app": name},
            owner_references=owners,
        ),
        spec=SimpleNamespace(host_network=host_network),
        status=SimpleNamespace(phase=phase, pod_ip="10.0.0.5"),
    )


def _owner_ref(kind: str, name: str, controller: bool = True):
    return SimpleNamespace(kind=kind, name=name, controller=controller)


def _client(config: AdvisorConfig | None = None) -> tuple[KubeClient, MagicMock, MagicMock, MagicMock]:
    core, apps, batch = MagicMock(), MagicMock(), MagicMock()
    client = KubeClient(config or AdvisorConfig(), core_api=core, apps_api=apps, batch_api=batch)
    return client, core, apps, batch


class TestPods:
    def test_pod_identity_conversion(self):
        pod = pod_identity(
            _v1_pod(
                "web-1",
                host_network=True,
                owners=[_owner_ref("Node", "n1", controller=False), _owner_ref("ReplicaSet", "web")],
            )
        )
        assert pod.name == "web-1"
        assert pod.ip == "10.0.0.5"
        assert pod.host_network
        assert pod.owner is not None and pod.owner.kind == "ReplicaSet"

    def test_list_running_pods_filters_phase(self):
        client, core, _, _ = _client()
        core.list_namespaced_pod.return_value = SimpleNamespace(
            items=[_v1_pod("a"), _v1_pod("b", phase="Pending"), _v1_pod("c")]
        )
        pods = client.list_running_pods("default")
        assert [p.name for p in pods] == ["a", "c"]
        core.list_namespaced_pod.assert_called_once_with("default", _request_timeout=10.0)

    def test_list_all_namespaces(self):
        client, core, _, _ = _client()
        core.list_pod_for_all_namespaces.return_value = SimpleNamespace(items=[])
        assert client.list_running_pods() == []
        core.list_pod_for_all_namespaces.assert_called_once()

    def test_list_error(self):
        client, core, _, _ = _client()
        core.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(KubernetesError, match="Forbidden"):
            client.list_running_pods("default")

    def test_fetch_pod_not_found(self):
        client, core, _, _ = _client()
        core.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
        assert client.fetch_pod("default", "gone") is None


class TestOwners:
    def test_replicaset_with_deployment_owner(self):
        client, _, apps, _ = _client()
        apps.read_namespaced_replica_set.return_value = SimpleNamespace(
            spec=SimpleNamespace(selector=SimpleNamespace(match_labels={"app": "web", "pod-template-hash": "x"})),
            metadata=SimpleNamespace(owner_references=[_owner_ref("Deployment", "web")]),
        )
        owner = client.fetch_owner("default", "ReplicaSet", "web-x")
        assert owner is not None
        assert owner.match_labels == {"app": "web", "pod-template-hash": "x"}
        assert owner.owner is not None and owner.owner.name == "web"
        apps.read_namespaced_replica_set.assert_called_once_with("web-x", "default", _request_timeout=10.0)

    def test_job_uses_batch_api(self):
        client, _, _, batch = _client()
        batch.read_namespaced_job.return_value = SimpleNamespace(
            spec=SimpleNamespace(selector=None),
            metadata=SimpleNamespace(owner_references=None),
        )
        owner = client.fetch_owner("default", "Job", "migrate")
        assert owner is not None
        assert owner.match_labels == {}
        assert owner.owner is None

    def test_missing_owner(self):
        client, _, apps, _ = _client()
        apps.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")
        assert client.fetch_owner("default", "Deployment", "web") is None

    def test_api_failure(self):
        client, _, apps, _ = _client()
        apps.read_namespaced_stateful_set.side_effect = ApiException(status=500, reason="Internal")
        with pytest.raises(KubernetesError):
            client.fetch_owner("default", "StatefulSet", "db")

    def test_unknown_kind(self):
        client, _, _, _ = _client()
        with pytest.raises(KubernetesError):
            client.fetch_owner("default", "CronJob", "nightly")


class TestNamespaces:
    def test_pod_namespace_env(self, monkeypatch):
        monkeypatch.setenv("POD_NAMESPACE", "team-a")
        client, _, _, _ = _client()
        assert client.current_namespace() == "team-a"

    def test_context_namespace(self, monkeypatch):
        monkeypatch.delenv("POD_NAMESPACE", raising=False)
        client, _, _, _ = _client()
        with patch(
            "flowpolicy.kube.cluster.config.list_kube_config_contexts",
            return_value=([], {"name": "dev", "context": {"namespace": "team-b"}}),
        ):
            assert client.current_namespace() == "team-b"

    def test_default_namespace(self, monkeypatch):
        monkeypatch.delenv("POD_NAMESPACE", raising=False)
        client, _, _, _ = _client()
        with patch(
            "flowpolicy.kube.cluster.config.list_kube_config_contexts",
            return_value=([], {"name": "dev", "context": {}}),
        ):
            assert client.current_namespace() == "default"

    def test_find_service_namespace_falls_back(self):
        client, core, _, _ = _client()
        core.read_namespaced_service.side_effect = [
            ApiException(status=404, reason="Not Found"),
            SimpleNamespace(),
        ]
        assert client.find_service_namespace("broker", ["kube-guardian", "kube-system"]) == "kube-system"


class TestBrokerTunnel:
    def _tunnel(self, namespace: str | None = "kube-guardian") -> tuple[BrokerTunnel, MagicMock]:
        kube = MagicMock()
        kube.find_service_namespace.return_value = namespace
        config = AdvisorConfig(port_forward_timeout=1.0)
        return BrokerTunnel(config, kube), kube

    def test_starts_port_forward(self):
        tunnel, kube = self._tunnel()
        proc = MagicMock()
        proc.poll.return_value = None
        with (
            patch("flowpolicy.kube.portforward.shutil.which", return_value="/usr/bin/kubectl"),
            patch("flowpolicy.kube.portforward.subprocess.Popen", return_value=proc) as mock_popen,
            patch("flowpolicy.kube.portforward.socket.create_connection"),
        ):
            with tunnel as opened:
                assert opened.local_url == "http://127.0.0.1:9090"

        cmd = mock_popen.call_args[0][0]
        assert cmd == [
            "/usr/bin/kubectl",
            "port-forward",
            "-n",
            "kube-guardian",
            "svc/broker",
            "9090:9090",
        ]
        kube.find_service_namespace.assert_called_once_with("broker", ["kube-guardian", "kube-system"])
        proc.terminate.assert_called_once()

    def test_service_missing(self):
        tunnel, _ = self._tunnel(namespace=None)
        with patch("flowpolicy.kube.portforward.shutil.which", return_value="/usr/bin/kubectl"):
            with pytest.raises(PortForwardError, match="not found"):
                tunnel.open()

    def test_kubectl_missing(self):
        tunnel, _ = self._tunnel()
        with patch("flowpolicy.kube.portforward.shutil.which", return_value=None):
            with pytest.raises(PortForwardError, match="kubectl"):
                tunnel.open()

    def test_process_exits_early(self):
        tunnel, _ = self._tunnel()
        proc = MagicMock()
        proc.poll.return_value = 1
        proc.stderr.read.return_value = b"error: unable to forward port"
        with (
            patch("flowpolicy.kube.portforward.shutil.which", return_value="/usr/bin/kubectl"),
            patch("flowpolicy.kube.portforward.subprocess.Popen", return_value=proc),
        ):
            with pytest.raises(PortForwardError, match="unable to forward"):
                tunnel.open()

    def test_readiness_timeout(self):
        tunnel, _ = self._tunnel()
        tunnel._config.port_forward_timeout = 0.3
        proc = MagicMock()
        proc.poll.return_value = None
        with (
            patch("flowpolicy.kube.portforward.shutil.which", return_value="/usr/bin/kubectl"),
            patch("flowpolicy.kube.portforward.subprocess.Popen", return_value=proc),
            patch(
                "flowpolicy.kube.portforward.socket.create_connection",
                side_effect=ConnectionRefusedError(),
            ),
        ):
            with pytest.raises(PortForwardError, match="not ready"):
                tunnel.open()
        proc.terminate.assert_called_once()

    def test_close_kills_stuck_process(self):
        tunnel, _ = self._tunnel()
        proc = MagicMock()
        proc.wait.side_effect = [subprocess.TimeoutExpired("kubectl", 5), 0]
        tunnel._proc = proc
        tunnel.close()
        proc.kill.assert_called_once()


class TestTransportFailures:
    def test_owner_timeout_is_kubernetes_error(self):
        client, _, apps, _ = _client()
        apps.read_namespaced_replica_set.side_effect = ReadTimeoutError(None, None, "Read timed out.")
        with pytest.raises(KubernetesError, match="unreachable"):
            client.fetch_owner("default", "ReplicaSet", "web-x")

    def test_unreachable_api_server(self):
        client, core, _, _ = _client()
        core.read_namespaced_pod.side_effect = MaxRetryError(None, "/api/v1", "connection refused")
        core.list_namespaced_pod.side_effect = MaxRetryError(None, "/api/v1", "connection refused")
        core.read_namespaced_service.side_effect = MaxRetryError(None, "/api/v1", "connection refused")
        with pytest.raises(KubernetesError):
            client.fetch_pod("default", "web")
        with pytest.raises(KubernetesError):
            client.list_running_pods("default")
        with pytest.raises(KubernetesError):
            client.find_service_namespace("broker", ["kube-guardian"])

    def test_batch_survives_owner_timeouts(self, config, broker, flow, web_pod):
        other = PodIdentity(
            namespace="default",
            name="other",
            ip="10.0.0.6",
            labels={"app": "other"},
            owner=OwnerReference(kind="StatefulSet", name="other"),
        )
        broker.pods[other.ip] = other
        broker.pods["10.0.0.7"] = PodIdentity(
            namespace="default",
            name="peer-0",
            ip="10.0.0.7",
            owner=OwnerReference(kind="ReplicaSet", name="peer"),
        )
        broker.flows[web_pod.name] = [flow("EGRESS", "10.0.0.7", "80")]
        broker.flows["other"] = [flow("INGRESS", "10.0.0.7", "8080", pod="other", pod_ip=other.ip)]

        client, _, apps, _ = _client()
        timeout = ReadTimeoutError(None, None, "Read timed out.")
        apps.read_namespaced_replica_set.side_effect = timeout
        apps.read_namespaced_stateful_set.side_effect = timeout
        service = PolicyService(config, broker, broker, client)

        results, first_error = service.generate_policies([web_pod.name, "other"], Schema.STANDARD)

        assert first_error is None
        assert [r.pod_name for r in results] == [web_pod.name, "other"]
        assert all(r.ok for r in results)
        web_spec = results[0].policy.manifest["spec"]
        assert web_spec["podSelector"] == {"matchLabels": {"app": web_pod.name}}
        assert web_spec["egress"][0]["to"] == [{"ipBlock": {"cidr": "10.0.0.7/32"}}]
