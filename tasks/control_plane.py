import os
import time
from pathlib import Path
from typing import Callable, Optional

from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.events import event_bus
from core.models import (
    TaskStatus,
    StandardResult,
    SubTaskResult,
    BootstrapPhase,
    BootstrapOutcome,
    BootstrapConfig,
    NodeIdentity,
    OperatorContext,
    HardwareProfile,
    OperatorDecisions,
)
from core.paths import ADMIN_CONF, user_kube_dir
from core.settings import AppSettings, load_settings
from core.state import config as global_config
from core.waiter import ReadinessCondition, ReadinessWaiter
from tasks import fail
from tasks.cni import install_overlay
from tasks.facts import get_node_facts
from tasks.kubeadm_config import build_bootstrap_config, write_init_config, write_kubelet_configs
from tasks.node_reset import reset_node_state
from tasks.preflight import verify_preconditions
from tasks.scheduling import remove_control_plane_taints
from utils.kube import kubeadm_init, kubeadm_print_join_command, parse_join_command, api_server_listening
from utils.linux import make_directory, copy_file, change_owner, change_mode, read_file, output_of
from utils.logger import sys_logger


# --- SUB-STEPS ---

@automated_substep("Run Kubeadm Init")
def _run_kubeadm_init(task: Task, config_path: str, settings: AppSettings) -> SubTaskResult:
    """
    Executes kubeadm init with relaxed preflight. This might take a while (image pulls).
    """
    k8s = settings.k8s
    skip_phases = "addon/kube-proxy" if k8s.skip_kube_proxy else None
    res = kubeadm_init(task, config_path, ignore_preflight_errors=k8s.ignore_preflight_errors, skip_phases=skip_phases)

    if res.failed:
        # Tool diagnostics are surfaced verbatim
        return SubTaskResult(success=False, message=f"Init failed. Output: {res.result}")

    return SubTaskResult(success=True, message="Control Plane Initialized", data=output_of(res))


@automated_substep("Wait For API Server")
def _wait_for_api_server(task: Task, config: BootstrapConfig, settings: AppSettings, waiter: ReadinessWaiter) -> SubTaskResult:
    readiness = settings.k8s.readiness
    condition = ReadinessCondition(
        description=f"kube-apiserver listening on {config.bind_port}",
        check=lambda: api_server_listening(task, config.bind_port),
        interval_seconds=readiness.api_server_interval,
        timeout_seconds=readiness.api_server_timeout,
    )
    outcome = waiter.wait(condition)

    if outcome.ready:
        return SubTaskResult(success=True, message=f"API server is running on port {config.bind_port}", data=True)

    message = f"API server not listening after {readiness.api_server_timeout}s"
    if readiness.api_server_strict:
        return SubTaskResult(success=False, message=message, data=False)

    sys_logger.warning(f"[{task.host.name}] {message}, continuing")
    return SubTaskResult(success=True, message=f"{message} (continuing)", data=False)


@automated_substep("Setup User Kubeconfig")
def _setup_user_kubeconfig(task: Task, operator: OperatorContext) -> SubTaskResult:
    """
    Copies admin.conf to the operator's kubeconfig and hands it over.
    """
    res_dir = make_directory(task, user_kube_dir(operator.home))
    if res_dir.failed:
        return SubTaskResult(success=False, message=f"Failed to create {user_kube_dir(operator.home)}")

    res_cp = copy_file(task, ADMIN_CONF, operator.kubeconfig_path, sudo=True)
    if res_cp.failed:
        return SubTaskResult(success=False, message=f"Failed to copy kubeconfig: {res_cp.result}")

    res_chown = change_owner(task, operator.kubeconfig_path, operator.owner)
    if res_chown.failed:
        return SubTaskResult(success=False, message="Failed to set ownership")

    change_mode(task, operator.kubeconfig_path, "600")

    return SubTaskResult(success=True, message=f"{operator.kubeconfig_path} owned by {operator.owner}", data=operator.kubeconfig_path)


@automated_substep("Capture Join Token")
def _capture_join_token(task: Task, init_output: str) -> SubTaskResult:
    token = parse_join_command(init_output) or kubeadm_print_join_command(task)
    if token is None:
        return SubTaskResult(success=False, message="No join command in kubeadm output and token create failed")
    return SubTaskResult(success=True, message=f"Join endpoint {token.control_plane_endpoint}", data=token)


@automated_substep("Fetch Admin Config")
def _fetch_kubeconfig_local(task: Task, local_path_str: str) -> SubTaskResult:
    """
    Reads the node's admin.conf and writes it to the configured LOCAL path.
    """
    remote_content = read_file(task, ADMIN_CONF)
    if not remote_content:
        return SubTaskResult(success=False, message="Failed to read remote admin.conf or file is empty")

    local_path = Path(local_path_str)
    try:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        with open(local_path, "w") as f:
            f.write(remote_content)
        os.chmod(local_path, 0o600)
    except OSError as e:
        return SubTaskResult(success=False, message=f"Failed to write local file: {e}")

    return SubTaskResult(success=True, message=f"Saved to {local_path}", data=str(local_path))


# --- ORCHESTRATOR ---

class ClusterInitiator:
    """
    Drives one control-plane bootstrap attempt:
    reset -> render -> kubeadm init -> readiness -> credentials -> overlay -> untaint.

    Sequential and single-shot; the first failing required step stops the run.
    """

    def __init__(
            self,
            task: Task,
            settings: AppSettings,
            waiter: Optional[ReadinessWaiter] = None,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.task = task
        self.settings = settings
        self.waiter = waiter or ReadinessWaiter(sleep=sleep)
        self.sleep = sleep
        self.outcome = BootstrapOutcome()

    @property
    def phase(self) -> BootstrapPhase:
        return self.outcome.phase

    def _advance(self, phase: BootstrapPhase, message: str = "") -> None:
        sys_logger.info(f"[{self.task.host.name}] PHASE {self.outcome.phase.value} -> {phase.value}")
        self.outcome.phase = phase
        event_bus.publish(f"phase:{phase.value}", self.task.host.name, "PHASE", message)

    def _fail(self, step: SubTaskResult) -> SubTaskResult:
        failed_in = self.outcome.phase
        self.outcome.failed_step = failed_in.value
        self.outcome.failed_substep = step.step
        self.outcome.message = f"{failed_in.value}: {step.message}"
        self._advance(BootstrapPhase.FAILED, self.outcome.message)
        return SubTaskResult(success=False, message=self.outcome.message, exception=step.exception, data=self.outcome)

    def run(
            self,
            identity: NodeIdentity,
            operator: OperatorContext,
            hardware: HardwareProfile,
            decisions: OperatorDecisions
    ) -> SubTaskResult:
        if self.phase != BootstrapPhase.IDLE:
            raise RuntimeError(f"ClusterInitiator already ran (phase {self.phase.value})")

        # 0. Operator decision point
        if not decisions.init_control_plane:
            self.outcome.message = "Control plane initialization skipped by operator"
            self._advance(BootstrapPhase.SKIPPED, self.outcome.message)
            return SubTaskResult(success=True, message=self.outcome.message, data=self.outcome)

        # 1. Reset
        self._advance(BootstrapPhase.RESETTING)
        s1 = reset_node_state(self.task, operator, self.settings, sleep=self.sleep)
        if not s1.success: return self._fail(s1)

        # 2. Render and persist configuration
        self._advance(BootstrapPhase.CONFIGURING)
        config = build_bootstrap_config(identity, self.settings)

        s2 = write_kubelet_configs(self.task, config, self.settings)
        if not s2.success: return self._fail(s2)

        s3 = write_init_config(self.task, config, self.settings)
        if not s3.success: return self._fail(s3)

        # 3. kubeadm init
        self._advance(BootstrapPhase.INITIALIZING)
        s4 = _run_kubeadm_init(self.task, s3.data, self.settings)
        if not s4.success: return self._fail(s4)

        # 4. Readiness (advisory unless strict)
        self._advance(BootstrapPhase.AWAITING_READINESS)
        s5 = _wait_for_api_server(self.task, config, self.settings, self.waiter)
        if not s5.success: return self._fail(s5)
        self.outcome.api_ready = s5.data

        # 5. Credentials
        self._advance(BootstrapPhase.EXTRACTING_CREDENTIALS)
        s6 = _setup_user_kubeconfig(self.task, operator)
        if not s6.success: return self._fail(s6)
        self.outcome.credential_path = s6.data

        s7 = _capture_join_token(self.task, s4.data)
        if not s7.success: return self._fail(s7)
        self.outcome.token = s7.data

        if self.settings.k8s.local_kubeconfig_path:
            s8 = _fetch_kubeconfig_local(self.task, self.settings.k8s.local_kubeconfig_path)
            if not s8.success: return self._fail(s8)

        # 6. Overlay, then untaint. Untainting first would let workloads land before networking.
        if decisions.install_overlay:
            self._advance(BootstrapPhase.INSTALLING_OVERLAY)
            s9 = install_overlay(self.task, self.settings, identity, hardware, operator.kubeconfig_path, self.waiter)
            if not s9.success: return self._fail(s9)
            self.outcome.overlay_ready = s9.data

            self._advance(BootstrapPhase.REPAIRING_SCHEDULING)
            s10 = remove_control_plane_taints(self.task, self.settings.k8s.control_plane_taints, operator.kubeconfig_path)
            if not s10.success: return self._fail(s10)

        self.outcome.message = f"Control plane {config.control_plane_endpoint} initialized"
        self._advance(BootstrapPhase.DONE, self.outcome.message)
        return SubTaskResult(success=True, message=self.outcome.message, data=self.outcome)


# --- MAIN TASK ---

@automated_step("Bootstrap Control Plane")
def bootstrap_control_plane(task: Task) -> Result:
    """
    Turns the node into a single control-plane cluster, if the operator said so.
    """
    settings = task.host.get("app_config") or load_settings(global_config.CONFIG_FILE)
    decisions = task.host.get("operator_decisions") or OperatorDecisions()

    facts_step = get_node_facts(task)
    if not facts_step.success: return fail(task, facts_step)
    facts = facts_step.data

    # Preconditions only matter once the operator agreed to touch the node
    if decisions.init_control_plane:
        pre_step = verify_preconditions(task, settings)
        if not pre_step.success: return fail(task, pre_step)

    initiator = ClusterInitiator(task, settings)
    step = initiator.run(facts.identity, facts.operator, facts.hardware, decisions)
    if not step.success: return fail(task, step)

    outcome: BootstrapOutcome = step.data
    if outcome.skipped:
        status = TaskStatus.SKIPPED
    elif outcome.api_ready is False or outcome.overlay_ready is False:
        status = TaskStatus.WARNING
    else:
        status = TaskStatus.CHANGED

    return Result(
        host=task.host,
        changed=not outcome.skipped,
        result=StandardResult(status=status, message=outcome.message, data=outcome)
    )
