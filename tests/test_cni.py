"""Unit tests for the flannel overlay install."""

import json

import pytest
import yaml

import tasks.cni
from core.models import HardwareProfile
from core.paths import OVERLAY_MANIFEST
from core.waiter import ReadinessWaiter
from tasks.cni import install_overlay, render_overlay_manifest

UPSTREAM_MANIFEST = """\
apiVersion: v1
kind: Namespace
metadata:
  name: kube-flannel
---
kind: ConfigMap
apiVersion: v1
metadata:
  name: kube-flannel-cfg
  namespace: kube-flannel
data:
  net-conf.json: |
    {
      "Network": "10.244.0.0/16",
      "Backend": {
        "Type": "vxlan"
      }
    }
---
apiVersion: apps/v1
kind: DaemonSet
metadata:
  name: kube-flannel-ds
  namespace: kube-flannel
spec:
  template:
    spec:
      containers:
      - name: kube-flannel
        image: docker.io/flannel/flannel:v0.24.0
        command:
        - /opt/bin/flanneld
        args:
        - --ip-masq
        - --kube-subnet-mgr
"""

READY_PODS = json.dumps({"items": [
    {"status": {"conditions": [{"type": "Ready", "status": "True"}]}},
]})
PENDING_PODS = json.dumps({"items": [
    {"status": {"conditions": [{"type": "Ready", "status": "False"}]}},
]})

SBC = HardwareProfile(is_constrained_sbc=True, model="Raspberry Pi 4 Model B Rev 1.4")


def _docs(rendered):
    return {doc["kind"]: doc for doc in yaml.safe_load_all(rendered)}


def _flannel_args(rendered):
    return _docs(rendered)["DaemonSet"]["spec"]["template"]["spec"]["containers"][0]["args"]


class TestRenderOverlayManifest:
    def test_network_follows_pod_cidr(self):
        rendered = render_overlay_manifest(UPSTREAM_MANIFEST, "10.42.0.0/16")

        net_conf = json.loads(_docs(rendered)["ConfigMap"]["data"]["net-conf.json"])
        assert net_conf["Network"] == "10.42.0.0/16"
        assert net_conf["Backend"] == {"Type": "vxlan"}

    def test_interface_is_appended(self):
        rendered = render_overlay_manifest(UPSTREAM_MANIFEST, "10.244.0.0/16", interface="eth0")

        assert _flannel_args(rendered) == ["--ip-masq", "--kube-subnet-mgr", "--iface=eth0"]

    def test_placeholder_interface_is_replaced(self):
        manifest = UPSTREAM_MANIFEST + "        - --iface=$(DEFAULT_LOCAL_IP)\n"

        rendered = render_overlay_manifest(manifest, "10.244.0.0/16", interface="wlan0")

        args = _flannel_args(rendered)
        assert "--iface=wlan0" in args
        assert not any("DEFAULT_LOCAL_IP" in arg for arg in args)

    def test_no_interface_leaves_args_alone(self):
        rendered = render_overlay_manifest(UPSTREAM_MANIFEST, "10.244.0.0/16")

        assert _flannel_args(rendered) == ["--ip-masq", "--kube-subnet-mgr"]


class TestInstallOverlay:
    @pytest.fixture(autouse=True)
    def manifest_on_node(self, monkeypatch):
        monkeypatch.setattr(tasks.cni, "read_file", lambda task, path: UPSTREAM_MANIFEST)

    def test_sbc_pins_detected_interface(self, task, identity, settings, shell, written, clock):
        shell.on("get pods", READY_PODS)
        waiter = ReadinessWaiter(clock=clock, sleep=clock.sleep)

        result = install_overlay(task, settings, identity, SBC, "/home/pi/.kube/config", waiter)

        assert result.success is True
        assert result.data is True
        assert "--iface=eth0" in _flannel_args(written[OVERLAY_MANIFEST])
        assert shell.ran(f"apply -f {OVERLAY_MANIFEST}")

    def test_generic_hardware_keeps_autodetection(self, task, identity, settings, shell, written, clock):
        shell.on("get pods", READY_PODS)
        waiter = ReadinessWaiter(clock=clock, sleep=clock.sleep)

        install_overlay(task, settings, identity, HardwareProfile(), "/home/pi/.kube/config", waiter)

        assert not any(arg.startswith("--iface") for arg in _flannel_args(written[OVERLAY_MANIFEST]))

    def test_timeout_is_tolerated_by_default(self, task, identity, settings, shell, written, clock):
        shell.on("get pods", PENDING_PODS)
        waiter = ReadinessWaiter(clock=clock, sleep=clock.sleep)

        result = install_overlay(task, settings, identity, SBC, "/home/pi/.kube/config", waiter)

        assert result.success is True
        assert result.data is False
        assert clock.now == settings.k8s.readiness.cni_timeout

    def test_timeout_fails_when_strict(self, task, identity, settings, shell, written, clock):
        settings.k8s.readiness.cni_strict = True
        shell.on("get pods", PENDING_PODS)
        waiter = ReadinessWaiter(clock=clock, sleep=clock.sleep)

        result = install_overlay(task, settings, identity, SBC, "/home/pi/.kube/config", waiter)

        assert result.success is False
        assert "not ready" in result.message

    def test_download_failure_stops_install(self, task, identity, settings, shell, written, clock):
        shell.on("curl -fsSL", "curl: (6) Could not resolve host", failed=True)
        waiter = ReadinessWaiter(clock=clock, sleep=clock.sleep)

        result = install_overlay(task, settings, identity, SBC, "/home/pi/.kube/config", waiter)

        assert result.success is False
        assert not shell.ran("apply -f")
