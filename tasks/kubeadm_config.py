"""
Renders the kubeadm and kubelet configuration documents.

Pure functions: nothing here touches a node. The documents are built as
dicts and serialised with PyYAML so values never need shell escaping.
"""

from typing import Dict, List

import yaml
from nornir.core.task import Task

from core.decorators import automated_substep
from core.models import SubTaskResult, NodeIdentity, BootstrapConfig, CgroupDriver
from core.paths import CLUSTER_CA_CERT, STATIC_POD_DIR, KUBEADM_CONFIG, KUBELET_CONFIG, KUBELET_DEFAULTS, KUBELET_DIR
from core.settings import AppSettings
from utils.linux import write_file, make_directory

KUBEADM_API = "kubeadm.k8s.io/v1beta3"
KUBELET_API = "kubelet.config.k8s.io/v1beta1"


def build_bootstrap_config(identity: NodeIdentity, settings: AppSettings) -> BootstrapConfig:
    k8s = settings.k8s
    return BootstrapConfig(
        node_name=identity.hostname,
        advertise_address=identity.ip_address,
        bind_port=k8s.bind_port,
        pod_cidr=k8s.pod_network_cidr,
        service_cidr=k8s.service_cidr,
        cgroup_driver=CgroupDriver(k8s.kubelet.cgroup_driver),
        fail_swap_on=k8s.kubelet.fail_swap_on,
        cri_socket=k8s.runtime.cri_socket,
    )


def _kubelet_authentication() -> Dict:
    return {
        "anonymous": {"enabled": False},
        "webhook": {"enabled": True},
        "x509": {"clientCAFile": CLUSTER_CA_CERT},
    }


def kubelet_configuration(config: BootstrapConfig, settings: AppSettings) -> Dict:
    """The node-agent document (KubeletConfiguration)."""
    kubelet = settings.k8s.kubelet
    return {
        "apiVersion": KUBELET_API,
        "kind": "KubeletConfiguration",
        "address": "0.0.0.0",
        "authentication": _kubelet_authentication(),
        "cgroupDriver": config.cgroup_driver.value,
        "failSwapOn": config.fail_swap_on,
        "containerRuntimeEndpoint": settings.k8s.runtime.runtime_endpoint,
        "staticPodPath": STATIC_POD_DIR,
        "evictionHard": dict(kubelet.eviction_hard),
        "maxPods": kubelet.max_pods,
        "serializeImagePulls": False,
        "systemReserved": dict(kubelet.system_reserved),
        "kubeReserved": dict(kubelet.kube_reserved),
        "enforceNodeAllocatable": list(kubelet.enforce_node_allocatable),
    }


def init_documents(config: BootstrapConfig, settings: AppSettings) -> List[Dict]:
    """InitConfiguration + ClusterConfiguration + KubeletConfiguration."""
    init_configuration = {
        "apiVersion": KUBEADM_API,
        "kind": "InitConfiguration",
        "bootstrapTokens": [{
            "groups": ["system:bootstrappers:kubeadm:default-node-token"],
            "ttl": "24h0m0s",
            "usages": ["signing", "authentication"],
        }],
        "localAPIEndpoint": {
            "advertiseAddress": config.advertise_address,
            "bindPort": config.bind_port,
        },
        "nodeRegistration": {
            "name": config.node_name,
            "criSocket": config.cri_socket,
            "taints": [],
        },
    }
    cluster_configuration = {
        "apiVersion": KUBEADM_API,
        "kind": "ClusterConfiguration",
        "networking": {
            "podSubnet": config.pod_cidr,
            "serviceSubnet": config.service_cidr,
        },
        "apiServer": {
            "extraArgs": {
                "bind-address": "0.0.0.0",
                "secure-port": str(config.bind_port),
                "advertise-address": config.advertise_address,
                "enable-bootstrap-token-auth": "true",
            },
        },
        "controlPlaneEndpoint": config.control_plane_endpoint,
    }
    # kubeadm init rewrites /var/lib/kubelet/config.yaml from this document
    return [init_configuration, cluster_configuration, kubelet_configuration(config, settings)]


def render_init_config(config: BootstrapConfig, settings: AppSettings) -> str:
    return yaml.safe_dump_all(init_documents(config, settings), sort_keys=False)


def render_kubelet_config(config: BootstrapConfig, settings: AppSettings) -> str:
    return yaml.safe_dump(kubelet_configuration(config, settings), sort_keys=False)


def render_kubelet_defaults(config: BootstrapConfig, settings: AppSettings) -> str:
    """/etc/default/kubelet, read by the kubeadm systemd drop-in."""
    args = [
        f"--node-ip={config.advertise_address}",
        f"--pod-infra-container-image={settings.k8s.kubelet.pause_image}",
        "--address=0.0.0.0",
        "--anonymous-auth=false",
    ]
    return f'KUBELET_EXTRA_ARGS="{" ".join(args)}"\n'


# --- SUB-STEPS ---

@automated_substep("Write Kubelet Config")
def write_kubelet_configs(task: Task, config: BootstrapConfig, settings: AppSettings) -> SubTaskResult:
    res_dir = make_directory(task, KUBELET_DIR, sudo=True)
    if res_dir.failed:
        return SubTaskResult(success=False, message=f"Failed to create {KUBELET_DIR}: {res_dir.result}")

    for path, content in (
            (KUBELET_DEFAULTS, render_kubelet_defaults(config, settings)),
            (KUBELET_CONFIG, render_kubelet_config(config, settings)),
    ):
        res = write_file(task, path, content)
        if res.failed:
            return SubTaskResult(success=False, message=f"Failed to write {path}: {res.result}")

    return SubTaskResult(success=True, message=f"{KUBELET_DEFAULTS} and {KUBELET_CONFIG} written")


@automated_substep("Write Kubeadm Config")
def write_init_config(task: Task, config: BootstrapConfig, settings: AppSettings) -> SubTaskResult:
    res = write_file(task, KUBEADM_CONFIG, render_init_config(config, settings))
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to write {KUBEADM_CONFIG}: {res.result}")
    return SubTaskResult(success=True, message=f"{KUBEADM_CONFIG} written", data=KUBEADM_CONFIG)
