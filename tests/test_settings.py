"""Unit tests for settings loading (defaults < YAML < environment)."""

import pytest

from core.settings import load_settings

ENV_KEYS = [
    "ENV",
    "K8S_VERSION",
    "K8S_POD_CIDR",
    "K8S_SERVICE_CIDR",
    "K8S_CNI_MANIFEST_URL",
    "K8S_LOCAL_KUBECONFIG",
    "K8S_API_SERVER_TIMEOUT",
    "K8S_API_SERVER_STRICT",
    "K8S_CNI_TIMEOUT",
    "K8S_CNI_STRICT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cluster_config.yaml"
    path.write_text(
        "environment: lab\n"
        "k8s:\n"
        "  pod_network_cidr: 10.42.0.0/16\n"
        "  unknown_key: ignored\n"
        "  kubelet:\n"
        "    max_pods: 50\n"
        "  readiness:\n"
        "    api_server_timeout: 120\n"
        "  runtime:\n"
        "    cri_service: cri-containerd\n"
    )
    return str(path)


class TestLoadSettings:
    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.yaml"))

        assert settings.environment == "dev"
        assert settings.k8s.pod_network_cidr == "10.244.0.0/16"
        assert settings.k8s.kubelet.cgroup_driver == "systemd"
        assert settings.k8s.readiness.api_server_timeout == 60
        assert settings.k8s.readiness.cni_timeout == 1200
        assert settings.k8s.runtime.service == "docker"

    def test_yaml_overrides_defaults(self, config_file):
        settings = load_settings(config_file)

        assert settings.environment == "lab"
        assert settings.k8s.pod_network_cidr == "10.42.0.0/16"
        assert settings.k8s.kubelet.max_pods == 50
        assert settings.k8s.kubelet.fail_swap_on is False
        assert settings.k8s.readiness.api_server_timeout == 120
        assert settings.k8s.readiness.api_server_interval == 5
        assert settings.k8s.runtime.cri_service == "cri-containerd"

    def test_env_overrides_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("K8S_POD_CIDR", "10.99.0.0/16")
        monkeypatch.setenv("K8S_API_SERVER_TIMEOUT", "300")
        monkeypatch.setenv("K8S_CNI_STRICT", "true")

        settings = load_settings(config_file)

        assert settings.k8s.pod_network_cidr == "10.99.0.0/16"
        assert settings.k8s.readiness.api_server_timeout == 300
        assert settings.k8s.readiness.cni_strict is True
        assert settings.k8s.kubelet.max_pods == 50

    def test_empty_local_kubeconfig_disables_copy(self, tmp_path, monkeypatch):
        path = tmp_path / "c.yaml"
        path.write_text("k8s:\n  local_kubeconfig_path: ''\n")

        settings = load_settings(str(path))

        assert settings.k8s.local_kubeconfig_path == ""
