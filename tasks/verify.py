from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.models import TaskStatus, StandardResult, SubTaskResult
from core.settings import load_settings
from core.state import config as global_config
from tasks import fail
from tasks.facts import get_node_facts
from utils.kube import kubectl_cluster_info, kubectl_get_nodes
from utils.linux import run_command, output_of, remote_file_exists

VERSION_COMMANDS = {
    "kubeadm": "kubeadm version -o short",
    "kubelet": "kubelet --version",
    "kubectl": "kubectl version --client",
}


@automated_substep("Collect Tool Versions")
def _collect_versions(task: Task, runtime_service: str) -> SubTaskResult:
    commands = dict(VERSION_COMMANDS)
    commands[runtime_service] = f"{runtime_service} --version"

    versions = {}
    missing = []
    for tool, cmd in commands.items():
        res = run_command(task, cmd)
        if res.failed:
            missing.append(tool)
        else:
            versions[tool] = output_of(res).splitlines()[0] if output_of(res) else ""

    if missing:
        return SubTaskResult(success=False, message=f"Not installed: {', '.join(missing)}", data=versions)
    return SubTaskResult(success=True, message="All tools installed", data=versions)


@automated_substep("Query Cluster")
def _query_cluster(task: Task, kubeconfig: str) -> SubTaskResult:
    if not remote_file_exists(task, kubeconfig):
        return SubTaskResult(success=False, message=f"No kubeconfig at {kubeconfig}")

    res_info = kubectl_cluster_info(task, kubeconfig)
    if res_info.failed:
        return SubTaskResult(success=False, message=f"Cluster unreachable: {res_info.result}")

    res_nodes = kubectl_get_nodes(task, kubeconfig)
    nodes = output_of(res_nodes) if not res_nodes.failed else ""
    return SubTaskResult(success=True, message="Cluster reachable", data=nodes)


@automated_step("Verify Installation")
def verify_installation(task: Task) -> Result:
    """
    Read-only check: tool versions, then cluster reachability.
    A node without a cluster is a warning, not a failure.
    """
    settings = task.host.get("app_config") or load_settings(global_config.CONFIG_FILE)

    facts_step = get_node_facts(task)
    if not facts_step.success: return fail(task, facts_step)

    s1 = _collect_versions(task, settings.k8s.runtime.service)
    if not s1.success: return fail(task, s1)

    s2 = _query_cluster(task, facts_step.data.operator.kubeconfig_path)
    if not s2.success:
        return Result(
            host=task.host,
            result=StandardResult(status=TaskStatus.WARNING, message=s2.message, data=s1.data)
        )

    return Result(
        host=task.host,
        result=StandardResult(
            status=TaskStatus.OK,
            message=f"{s2.message}, {len(s1.data)} tools installed",
            data={"versions": s1.data, "nodes": s2.data}
        )
    )
