from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.models import TaskStatus, StandardResult, SubTaskResult
from core.settings import AppSettings, load_settings
from core.state import config as global_config
from tasks import fail
from utils.linux import service_active, command_exists

REQUIRED_BINARIES = ["kubeadm", "kubelet", "kubectl"]


@automated_substep("Check Container Runtime")
def check_runtime_ready(task: Task, settings: AppSettings) -> SubTaskResult:
    """
    The runtime installer must have left both daemons running.
    """
    runtime = settings.k8s.runtime
    inactive = [svc for svc in (runtime.service, runtime.cri_service) if not service_active(task, svc)]

    if inactive:
        return SubTaskResult(
            success=False,
            message=f"Container runtime not ready: {', '.join(inactive)} not active"
        )
    return SubTaskResult(success=True, message=f"{runtime.service} and {runtime.cri_service} active")


@automated_substep("Check Kubernetes Binaries")
def check_binaries(task: Task) -> SubTaskResult:
    missing = [binary for binary in REQUIRED_BINARIES if not command_exists(task, binary)]
    if missing:
        return SubTaskResult(success=False, message=f"Missing binaries: {', '.join(missing)}")
    return SubTaskResult(success=True, message="kubeadm, kubelet, kubectl present")


def verify_preconditions(task: Task, settings: AppSettings) -> SubTaskResult:
    s1 = check_runtime_ready(task, settings)
    if not s1.success: return s1

    s2 = check_binaries(task)
    if not s2.success: return s2

    return SubTaskResult(success=True, message="Runtime and Kubernetes binaries ready")


@automated_step("Check Node Preconditions")
def check_preconditions(task: Task) -> Result:
    """
    Verifies what the provisioning layer should already have installed.
    Nothing on the node is modified.
    """
    settings = task.host.get("app_config") or load_settings(global_config.CONFIG_FILE)

    step = verify_preconditions(task, settings)
    if not step.success: return fail(task, step)

    return Result(
        host=task.host,
        result=StandardResult(status=TaskStatus.OK, message=step.message)
    )
