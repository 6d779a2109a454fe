import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Union

import yaml
from dotenv import load_dotenv

# Load env vars if present
load_dotenv()


# --- DATACLASSES (SCHEMA) ---

@dataclass
class KubeletSettings:
    """Node-agent policy. Defaults are the reference cluster policy."""
    cgroup_driver: str = "systemd"
    fail_swap_on: bool = False
    max_pods: int = 110
    pause_image: str = "registry.k8s.io/pause:3.9"
    eviction_hard: Dict[str, str] = field(default_factory=lambda: {
        "memory.available": "100Mi",
        "nodefs.available": "10%",
        "nodefs.inodesFree": "5%",
    })
    system_reserved: Dict[str, str] = field(default_factory=lambda: {
        "memory": "512Mi",
        "cpu": "500m",
        "ephemeral-storage": "1Gi",
    })
    kube_reserved: Dict[str, str] = field(default_factory=lambda: {
        "memory": "512Mi",
        "cpu": "500m",
        "ephemeral-storage": "1Gi",
    })
    enforce_node_allocatable: List[str] = field(
        default_factory=lambda: ["pods", "system-reserved", "kube-reserved"]
    )


@dataclass
class ReadinessSettings:
    """Poll windows for the two readiness waits, plus the reset settle delay."""
    api_server_timeout: int = 60
    api_server_interval: int = 5
    # False keeps the permissive behaviour: a timeout is only a warning
    api_server_strict: bool = False
    cni_timeout: int = 1200
    cni_interval: int = 10
    cni_strict: bool = False
    settle_seconds: int = 5


@dataclass
class RuntimeSettings:
    """Service names of the container runtime stack on the node."""
    service: str = "docker"
    cri_service: str = "containerd"
    cri_socket: str = "unix:///var/run/containerd/containerd.sock"
    runtime_endpoint: str = "unix:///run/containerd/containerd.sock"


@dataclass
class K8sSettings:
    """Defines Kubernetes node and cluster configuration."""
    version: str = "1.28"
    pod_network_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    bind_port: int = 6443
    cni_manifest_url: str = "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
    cni_namespace: str = "kube-flannel"
    cni_selector: str = "app=flannel"

    # kubeadm init policy
    ignore_preflight_errors: str = "all"
    skip_kube_proxy: bool = True
    control_plane_taints: List[str] = field(default_factory=lambda: [
        "node-role.kubernetes.io/control-plane:NoSchedule",
        "node-role.kubernetes.io/master:NoSchedule",
    ])

    # Copy of admin.conf on the machine running the CLI ("" disables it)
    local_kubeconfig_path: str = "inventory/kubeconfig_admin.yaml"

    kubelet: KubeletSettings = field(default_factory=KubeletSettings)
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)


@dataclass
class AppSettings:
    """Root configuration object."""
    k8s: K8sSettings = field(default_factory=K8sSettings)
    environment: str = "dev"


# --- LOADER LOGIC ---

def _as_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _pick(cls, data: Dict) -> Dict:
    """We filter only known keys to avoid init errors."""
    return {k: v for k, v in data.items() if k in cls.__annotations__}


def load_settings(config_path: str = "cluster_config.yaml") -> AppSettings:
    """
    Loads configuration merging: Defaults (Schema) < YAML File (Config) < Environment Vars (Overrides).
    """

    # 1. Load YAML Config
    file_config = {}
    path = Path(config_path)
    if path.exists():
        try:
            with open(path, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            # We log to stdout/stderr since the logger might not be ready yet
            print(f"[Warning] Failed to load {config_path}: {e}")

    # 2. Load Environment Variables (Overrides)
    # We manually map only the keys that make sense to override via ENV
    env_config = {
        "environment": os.getenv("ENV"),
        "k8s": {
            "version": os.getenv("K8S_VERSION"),
            "pod_network_cidr": os.getenv("K8S_POD_CIDR"),
            "service_cidr": os.getenv("K8S_SERVICE_CIDR"),
            "cni_manifest_url": os.getenv("K8S_CNI_MANIFEST_URL"),
            "local_kubeconfig_path": os.getenv("K8S_LOCAL_KUBECONFIG"),
            "readiness": {
                "api_server_timeout": _as_int(os.getenv("K8S_API_SERVER_TIMEOUT")),
                "api_server_strict": _as_bool(os.getenv("K8S_API_SERVER_STRICT")),
                "cni_timeout": _as_int(os.getenv("K8S_CNI_TIMEOUT")),
                "cni_strict": _as_bool(os.getenv("K8S_CNI_STRICT")),
            },
        }
    }

    # Cleanup: We remove None/Empty keys from ENV dictionaries
    def clean_none(d: Union[Dict, None]):
        if not isinstance(d, dict): return d
        cleaned = {k: clean_none(v) for k, v in d.items() if v is not None}
        return {k: v for k, v in cleaned.items() if v != {}}

    env_config = clean_none(env_config)

    # 3. Merge Logic
    k8s_file = dict(file_config.get("k8s") or {})
    k8s_env = dict(env_config.get("k8s") or {})

    # Nested sections are merged on their own and injected as objects
    nested = {}
    for key, cls in (("kubelet", KubeletSettings), ("readiness", ReadinessSettings), ("runtime", RuntimeSettings)):
        section = {**(k8s_file.pop(key, None) or {}), **(k8s_env.pop(key, None) or {})}
        nested[key] = cls(**_pick(cls, section))

    # Priority: Env > File > Defaults
    k8s_final = {**k8s_file, **k8s_env}
    k8s_args = _pick(K8sSettings, k8s_final)
    k8s_args.update(nested)

    k8s_obj = K8sSettings(**k8s_args)

    # --- App Root ---
    app_env_val = env_config.get("environment") or file_config.get("environment", "dev")

    return AppSettings(
        k8s=k8s_obj,
        environment=app_env_val
    )
