import time
from typing import Callable, Dict

from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.models import TaskStatus, StandardResult, SubTaskResult, RemovalOutcome, OperatorContext
from core.paths import CNI_CONF_DIR, KUBELET_DIR, KUBERNETES_DIR, user_kube_dir
from core.settings import AppSettings, load_settings
from core.state import config as global_config
from tasks import fail
from tasks.facts import get_node_facts
from utils.kube import kubeadm_reset
from utils.linux import clear_directory, command_exists, remove_path, systemctl
from utils.logger import sys_logger


def _summary(outcomes: Dict[str, RemovalOutcome]) -> str:
    removed = [target for target, outcome in outcomes.items() if outcome == RemovalOutcome.REMOVED]
    failed = [target for target, outcome in outcomes.items() if outcome == RemovalOutcome.FAILED]
    parts = []
    if removed:
        parts.append(f"Removed: {', '.join(removed)}")
    if failed:
        parts.append(f"Could not remove: {', '.join(failed)}")
    return "; ".join(parts) or "Nothing to remove"


# --- SUB-STEPS ---

@automated_substep("Kubeadm Reset")
def _kubeadm_reset(task: Task) -> SubTaskResult:
    """
    kubeadm's own cleanup. Best-effort: a node that never had kubeadm is NOT_FOUND,
    an error from an installed kubeadm is FAILED and the reset carries on.
    """
    if not command_exists(task, "kubeadm"):
        return SubTaskResult(success=True, message="kubeadm not installed", data=RemovalOutcome.NOT_FOUND)

    res = kubeadm_reset(task, force=True)
    if res.failed:
        sys_logger.warning(f"[{task.host.name}] kubeadm reset reported an error, continuing: {res.result}")
        return SubTaskResult(success=True, message="kubeadm reset failed (continuing)", data=RemovalOutcome.FAILED)
    return SubTaskResult(success=True, message="kubeadm reset completed", data=RemovalOutcome.REMOVED)


@automated_substep("Remove CNI And User Credentials")
def _remove_network_and_credentials(task: Task, operator: OperatorContext) -> SubTaskResult:
    outcomes = {
        CNI_CONF_DIR: clear_directory(task, CNI_CONF_DIR),
        user_kube_dir(operator.home): remove_path(task, user_kube_dir(operator.home)),
    }
    return SubTaskResult(success=True, message=_summary(outcomes), data=outcomes)


@automated_substep("Stop Kubelet And Runtime")
def _stop_services(task: Task, settings: AppSettings) -> SubTaskResult:
    for service in ("kubelet", settings.k8s.runtime.service):
        res = systemctl(task, service, "stop")
        if res.failed:
            return SubTaskResult(success=False, message=f"Failed to stop {service}: {res.result}")
    return SubTaskResult(success=True, message="kubelet and runtime stopped")


@automated_substep("Clear Node State")
def _clear_node_state(task: Task) -> SubTaskResult:
    outcomes = {
        KUBELET_DIR: clear_directory(task, KUBELET_DIR),
        KUBERNETES_DIR: clear_directory(task, KUBERNETES_DIR),
    }
    return SubTaskResult(success=True, message=_summary(outcomes), data=outcomes)


@automated_substep("Restart Runtime And Kubelet")
def _restart_services(task: Task, settings: AppSettings) -> SubTaskResult:
    runtime = settings.k8s.runtime
    for service, action in ((runtime.service, "start"), ("kubelet", "start"), (runtime.cri_service, "restart")):
        res = systemctl(task, service, action)
        if res.failed:
            return SubTaskResult(success=False, message=f"Failed to {action} {service}: {res.result}")
    return SubTaskResult(success=True, message="Runtime and kubelet running")


def reset_node_state(
        task: Task,
        operator: OperatorContext,
        settings: AppSettings,
        sleep: Callable[[float], None] = time.sleep
) -> SubTaskResult:
    """
    Brings the node back to a clean pre-bootstrap state.
    Safe to run any number of times; data maps each target to its RemovalOutcome.
    """
    outcomes: Dict[str, RemovalOutcome] = {}

    s1 = _kubeadm_reset(task)
    if not s1.success: return s1
    outcomes["kubeadm"] = s1.data

    s2 = _remove_network_and_credentials(task, operator)
    if not s2.success: return s2
    outcomes.update(s2.data)

    s3 = _stop_services(task, settings)
    if not s3.success: return s3

    s4 = _clear_node_state(task)
    if not s4.success: return s4
    outcomes.update(s4.data)

    s5 = _restart_services(task, settings)
    if not s5.success: return s5

    # Soft synchronisation point: daemons finish restarting
    sleep(settings.k8s.readiness.settle_seconds)

    return SubTaskResult(success=True, message=_summary(outcomes), data=outcomes)


# --- MAIN TASK ---

@automated_step("Reset Node")
def reset_node(task: Task) -> Result:
    """
    Standalone reset: removes all cluster state from the node.
    """
    settings = task.host.get("app_config") or load_settings(global_config.CONFIG_FILE)

    facts_step = get_node_facts(task)
    if not facts_step.success: return fail(task, facts_step)

    step = reset_node_state(task, facts_step.data.operator, settings)
    if not step.success: return fail(task, step)

    outcomes = step.data.values()
    changed = any(outcome == RemovalOutcome.REMOVED for outcome in outcomes)
    if any(outcome == RemovalOutcome.FAILED for outcome in outcomes):
        status = TaskStatus.WARNING
    else:
        status = TaskStatus.CHANGED if changed else TaskStatus.OK

    return Result(
        host=task.host,
        changed=changed,
        result=StandardResult(
            status=status,
            message=step.message,
            data=step.data
        )
    )
