from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.models import TaskStatus, StandardResult, SubTaskResult, BootstrapToken, OperatorDecisions
from core.settings import AppSettings, load_settings
from core.state import config as global_config
from tasks import fail
from tasks.facts import get_node_facts
from tasks.kubeadm_config import build_bootstrap_config, write_kubelet_configs
from tasks.node_reset import reset_node_state
from utils.kube import kubeadm_join


@automated_substep("Run Kubeadm Join")
def _run_kubeadm_join(task: Task, token: BootstrapToken, settings: AppSettings) -> SubTaskResult:
    k8s = settings.k8s
    res = kubeadm_join(task, token, k8s.runtime.cri_socket, ignore_preflight_errors=k8s.ignore_preflight_errors)
    if res.failed:
        return SubTaskResult(success=False, message=f"Join failed. Output: {res.result}")
    return SubTaskResult(success=True, message=f"Joined {token.control_plane_endpoint}")


@automated_step("Join Cluster")
def join_cluster(task: Task) -> Result:
    """
    Resets the worker and joins it with the token printed by the control plane.
    """
    settings = task.host.get("app_config") or load_settings(global_config.CONFIG_FILE)
    decisions = task.host.get("operator_decisions") or OperatorDecisions()

    if decisions.join_token is None:
        return Result(
            host=task.host,
            failed=True,
            result=StandardResult(TaskStatus.FAILED, "No join token given (--endpoint, --token, --ca-cert-hash)")
        )

    facts_step = get_node_facts(task)
    if not facts_step.success: return fail(task, facts_step)
    facts = facts_step.data

    s1 = reset_node_state(task, facts.operator, settings)
    if not s1.success: return fail(task, s1)

    config = build_bootstrap_config(facts.identity, settings)
    s2 = write_kubelet_configs(task, config, settings)
    if not s2.success: return fail(task, s2)

    s3 = _run_kubeadm_join(task, decisions.join_token, settings)
    if not s3.success: return fail(task, s3)

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(status=TaskStatus.CHANGED, message=s3.message, data=decisions.join_token)
    )
