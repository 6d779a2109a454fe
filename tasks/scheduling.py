from typing import List

from nornir.core.task import Task

from core.decorators import automated_substep
from core.models import SubTaskResult
from utils.kube import kubectl_taint


@automated_substep("Untaint Control Plane")
def remove_control_plane_taints(task: Task, taints: List[str], kubeconfig: str) -> SubTaskResult:
    """
    Allows workloads to run on the control plane (single node setup).
    A taint that is not present counts as removed.
    """
    removed = []
    for taint in taints:
        res = kubectl_taint(task, "--all", f"{taint}-", kubeconfig)

        if res.failed:
            if "not found" in str(res.result):
                continue
            return SubTaskResult(success=False, message=f"Failed to untaint {taint}: {res.result}")
        removed.append(taint.split(":")[0])

    if not removed:
        return SubTaskResult(success=True, message="Taints already removed", data=removed)
    return SubTaskResult(success=True, message=f"Removed {', '.join(removed)}", data=removed)
