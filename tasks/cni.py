import json
from typing import List, Optional

import yaml
from nornir.core.task import Task

from core.decorators import automated_substep
from core.models import SubTaskResult, NodeIdentity, HardwareProfile
from core.paths import OVERLAY_MANIFEST
from core.settings import AppSettings
from core.waiter import ReadinessCondition, ReadinessWaiter
from utils.kube import kubectl_apply, kubectl_pods_ready
from utils.linux import curl_download, read_file, write_file
from utils.logger import sys_logger

FLANNEL_CONTAINER = "kube-flannel"
FLANNEL_CONFIGMAP = "kube-flannel-cfg"
IFACE_FLAG = "--iface="


def _patch_net_conf(document: dict, pod_cidr: str) -> None:
    data = document.get("data") or {}
    raw = data.get("net-conf.json")
    if not raw:
        return
    net_conf = json.loads(raw)
    net_conf["Network"] = pod_cidr
    data["net-conf.json"] = json.dumps(net_conf, indent=2) + "\n"


def _patch_iface(document: dict, interface: str) -> None:
    containers = (((document.get("spec") or {}).get("template") or {}).get("spec") or {}).get("containers") or []
    for container in containers:
        if container.get("name") != FLANNEL_CONTAINER:
            continue
        args: List[str] = container.setdefault("args", [])
        pinned = f"{IFACE_FLAG}{interface}"
        for index, arg in enumerate(args):
            if arg.startswith(IFACE_FLAG):
                args[index] = pinned
                break
        else:
            args.append(pinned)


def render_overlay_manifest(manifest: str, pod_cidr: str, interface: Optional[str] = None) -> str:
    """
    Parameterises the upstream flannel manifest.

    The ConfigMap network is set to the pod CIDR. When an interface is given,
    the flannel container's --iface argument (upstream placeholder
    $(DEFAULT_LOCAL_IP)) is pinned to it.
    """
    documents = [doc for doc in yaml.safe_load_all(manifest) if doc]

    for document in documents:
        kind = document.get("kind")
        name = (document.get("metadata") or {}).get("name")
        if kind == "ConfigMap" and name == FLANNEL_CONFIGMAP:
            _patch_net_conf(document, pod_cidr)
        elif kind == "DaemonSet" and interface:
            _patch_iface(document, interface)

    return yaml.safe_dump_all(documents, sort_keys=False)


# --- SUB-STEPS ---

@automated_substep("Fetch Overlay Manifest")
def _fetch_manifest(task: Task, url: str) -> SubTaskResult:
    res = curl_download(task, url, OVERLAY_MANIFEST)
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to download {url}: {res.result}")

    content = read_file(task, OVERLAY_MANIFEST)
    if not content:
        return SubTaskResult(success=False, message=f"Downloaded manifest {OVERLAY_MANIFEST} is empty")
    return SubTaskResult(success=True, message=f"Fetched {url}", data=content)


@automated_substep("Parameterize Overlay Manifest")
def _parameterize_manifest(
        task: Task,
        manifest: str,
        settings: AppSettings,
        identity: NodeIdentity,
        hardware: HardwareProfile
) -> SubTaskResult:
    interface = identity.interface if hardware.is_constrained_sbc else None
    rendered = render_overlay_manifest(manifest, settings.k8s.pod_network_cidr, interface)

    res = write_file(task, OVERLAY_MANIFEST, rendered)
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to write {OVERLAY_MANIFEST}: {res.result}")

    pinned = f", iface pinned to {interface}" if interface else ""
    return SubTaskResult(success=True, message=f"Network {settings.k8s.pod_network_cidr}{pinned}", data=rendered)


@automated_substep("Apply Overlay Manifest")
def _apply_manifest(task: Task, kubeconfig: str) -> SubTaskResult:
    res = kubectl_apply(task, OVERLAY_MANIFEST, kubeconfig)
    if res.failed:
        return SubTaskResult(success=False, message=f"CNI Install Failed: {res.result}")
    return SubTaskResult(success=True, message="Flannel manifest applied")


@automated_substep("Wait For Overlay Pods")
def _wait_for_pods(task: Task, settings: AppSettings, kubeconfig: str, waiter: ReadinessWaiter) -> SubTaskResult:
    k8s = settings.k8s
    readiness = k8s.readiness
    condition = ReadinessCondition(
        description=f"pods {k8s.cni_selector} ready in {k8s.cni_namespace}",
        check=lambda: kubectl_pods_ready(task, k8s.cni_namespace, k8s.cni_selector, kubeconfig),
        interval_seconds=readiness.cni_interval,
        timeout_seconds=readiness.cni_timeout,
    )
    outcome = waiter.wait(condition)

    if outcome.ready:
        return SubTaskResult(success=True, message=f"Overlay ready after {outcome.elapsed_seconds:.0f}s", data=True)

    message = f"Overlay pods not ready after {readiness.cni_timeout}s"
    if readiness.cni_strict:
        return SubTaskResult(success=False, message=message, data=False)

    sys_logger.warning(f"[{task.host.name}] {message}, continuing")
    return SubTaskResult(success=True, message=f"{message} (continuing)", data=False)


def install_overlay(
        task: Task,
        settings: AppSettings,
        identity: NodeIdentity,
        hardware: HardwareProfile,
        kubeconfig: str,
        waiter: ReadinessWaiter
) -> SubTaskResult:
    """
    Fetch, parameterize, apply and wait for the flannel overlay.
    data is True when the pods became ready, False on a tolerated timeout.
    """
    s1 = _fetch_manifest(task, settings.k8s.cni_manifest_url)
    if not s1.success: return s1

    s2 = _parameterize_manifest(task, s1.data, settings, identity, hardware)
    if not s2.success: return s2

    s3 = _apply_manifest(task, kubeconfig)
    if not s3.success: return s3

    return _wait_for_pods(task, settings, kubeconfig, waiter)
