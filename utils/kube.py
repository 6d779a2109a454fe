"""Thin wrappers over kubeadm (bootstrap tool) and kubectl (cluster API client).

Every call goes through the unified command dispatcher so it works the same
on the local machine and over SSH.
"""

import json
import re
from typing import Optional

from nornir.core.task import Task, Result

from core.models import BootstrapToken
from utils.linux import run_command, output_of

# kubeadm init and join pull images; Scrapli defaults to 30s per operation
KUBEADM_TIMEOUT = 900.0

JOIN_PATTERN = re.compile(
    r"kubeadm join\s+(?P<endpoint>\S+)\s+--token\s+(?P<token>\S+)"
    r"[\s\\]+--discovery-token-ca-cert-hash\s+(?P<hash>sha256:[0-9a-fA-F]+)"
)


def parse_join_command(output: str) -> Optional[BootstrapToken]:
    """Extracts the first worker join credentials printed by kubeadm."""
    match = JOIN_PATTERN.search(output or "")
    if not match:
        return None
    return BootstrapToken(
        token=match.group("token"),
        ca_cert_hash=match.group("hash"),
        control_plane_endpoint=match.group("endpoint"),
    )


# --- KUBEADM ---

def kubeadm_reset(task: Task, force: bool = True) -> Result:
    flags = " -f" if force else ""
    return run_command(task, f"kubeadm reset{flags}", sudo=True)


def kubeadm_init(
        task: Task,
        config_path: str,
        ignore_preflight_errors: str = "all",
        skip_phases: Optional[str] = None,
        verbosity: int = 5
) -> Result:
    cmd = f"kubeadm init --config={config_path} --v={verbosity}"
    if ignore_preflight_errors:
        cmd += f" --ignore-preflight-errors={ignore_preflight_errors}"
    if skip_phases:
        cmd += f" --skip-phases={skip_phases}"
    return run_command(task, cmd, sudo=True, timeout=KUBEADM_TIMEOUT)


def kubeadm_join(
        task: Task,
        token: BootstrapToken,
        cri_socket: str,
        ignore_preflight_errors: str = "all"
) -> Result:
    cmd = (
        f"kubeadm join {token.control_plane_endpoint} --token {token.token} "
        f"--discovery-token-ca-cert-hash {token.ca_cert_hash} --cri-socket={cri_socket}"
    )
    if ignore_preflight_errors:
        cmd += f" --ignore-preflight-errors={ignore_preflight_errors}"
    return run_command(task, cmd, sudo=True, timeout=KUBEADM_TIMEOUT)


def kubeadm_print_join_command(task: Task) -> Optional[BootstrapToken]:
    """Mints a fresh token when the init output could not be parsed."""
    res = run_command(task, "kubeadm token create --print-join-command", sudo=True)
    if res.failed:
        return None
    return parse_join_command(output_of(res))


# --- KUBECTL ---

def _kubectl(kubeconfig: Optional[str]) -> str:
    return f"kubectl --kubeconfig {kubeconfig}" if kubeconfig else "kubectl"


def kubectl_apply(task: Task, manifest: str, kubeconfig: Optional[str] = None) -> Result:
    """Applies a manifest path or URL."""
    return run_command(task, f"{_kubectl(kubeconfig)} apply -f {manifest}")


def kubectl_taint(task: Task, node: str, taint: str, kubeconfig: Optional[str] = None) -> Result:
    """node may be a node name or '--all'."""
    return run_command(task, f"{_kubectl(kubeconfig)} taint nodes {node} {taint}")


def kubectl_cluster_info(task: Task, kubeconfig: Optional[str] = None) -> Result:
    return run_command(task, f"{_kubectl(kubeconfig)} cluster-info")


def kubectl_get_nodes(task: Task, kubeconfig: Optional[str] = None) -> Result:
    return run_command(task, f"{_kubectl(kubeconfig)} get nodes -o wide")


def pods_ready(pod_list: dict) -> bool:
    """True when the list has pods and every one reports Ready=True."""
    items = pod_list.get("items") or []
    if not items:
        return False
    for pod in items:
        conditions = (pod.get("status") or {}).get("conditions") or []
        ready = [c for c in conditions if c.get("type") == "Ready"]
        if not ready or ready[0].get("status") != "True":
            return False
    return True


def kubectl_pods_ready(task: Task, namespace: str, selector: str, kubeconfig: Optional[str] = None) -> bool:
    res = run_command(task, f"{_kubectl(kubeconfig)} -n {namespace} get pods -l {selector} -o json")
    if res.failed:
        return False
    try:
        return pods_ready(json.loads(output_of(res)))
    except ValueError:
        return False


def api_server_listening(task: Task, port: int = 6443) -> bool:
    """True once kube-apiserver holds a listening socket on the port."""
    res = run_command(task, "ss -tlnp", sudo=True)
    if res.failed:
        return False
    for line in output_of(res).splitlines():
        if f":{port} " in f"{line} " and "kube-apiserver" in line:
            return True
    return False
