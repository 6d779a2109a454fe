from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from core.paths import user_kubeconfig


class TaskStatus(str, Enum):
    OK = "OK"  # Task completed successfully or was idempotent (no change)
    CHANGED = "CHANGED"  # Task performed an action successfully
    WARNING = "WARNING"  # Task succeeded but with non-critical issues
    FAILED = "FAILED"  # Task failed, blocking execution
    SKIPPED = "SKIPPED"  # Task was skipped by operator decision


@dataclass
class StandardResult:
    """
    Standard payload to be included in Nornir's Result.result.
    """
    status: TaskStatus
    message: str
    data: Optional[Any] = None  # To pass data between tasks (context sharing)


@dataclass
class SubTaskResult:
    """Lightweight result object for internal sub-steps."""
    success: bool
    message: str
    exception: Optional[Exception] = None
    data: Optional[Any] = None
    step: Optional[str] = None  # Set by automated_substep


# --- NODE DOMAIN ---

class CgroupDriver(str, Enum):
    SYSTEMD = "systemd"
    CGROUPFS = "cgroupfs"


class RemovalOutcome(str, Enum):
    """Typed outcome of a best-effort cleanup."""
    REMOVED = "REMOVED"
    NOT_FOUND = "NOT_FOUND"
    FAILED = "FAILED"  # Target present but the cleanup command errored


class BootstrapPhase(str, Enum):
    IDLE = "IDLE"
    RESETTING = "RESETTING"
    CONFIGURING = "CONFIGURING"
    INITIALIZING = "INITIALIZING"
    AWAITING_READINESS = "AWAITING_READINESS"
    EXTRACTING_CREDENTIALS = "EXTRACTING_CREDENTIALS"
    INSTALLING_OVERLAY = "INSTALLING_OVERLAY"
    REPAIRING_SCHEDULING = "REPAIRING_SCHEDULING"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (BootstrapPhase.DONE, BootstrapPhase.SKIPPED, BootstrapPhase.FAILED)


@dataclass(frozen=True)
class NodeIdentity:
    """Who the node is on the network. Detected once, never changed."""
    hostname: str
    interface: str
    ip_address: str


@dataclass(frozen=True)
class OperatorContext:
    """The non-root account that ends up owning the admin kubeconfig."""
    user: str
    group: str
    home: str

    @property
    def owner(self) -> str:
        return f"{self.user}:{self.group}"

    @property
    def kubeconfig_path(self) -> str:
        return user_kubeconfig(self.home)


@dataclass(frozen=True)
class HardwareProfile:
    is_constrained_sbc: bool = False
    model: str = ""


@dataclass(frozen=True)
class NodeFacts:
    """Everything detected about a node before it is touched."""
    identity: NodeIdentity
    operator: OperatorContext
    hardware: HardwareProfile
    os_id: str = "unknown"
    os_version: str = "unknown"


@dataclass(frozen=True)
class BootstrapToken:
    token: str
    ca_cert_hash: str
    control_plane_endpoint: str

    @property
    def join_command(self) -> str:
        return (
            f"kubeadm join {self.control_plane_endpoint} --token {self.token} "
            f"--discovery-token-ca-cert-hash {self.ca_cert_hash}"
        )


@dataclass(frozen=True)
class OperatorDecisions:
    """
    Answers to the interactive decision points.
    join_token is only used by the worker join flow.
    """
    init_control_plane: bool = False
    install_overlay: bool = True
    join_token: Optional[BootstrapToken] = None


@dataclass(frozen=True)
class BootstrapConfig:
    node_name: str
    advertise_address: str
    pod_cidr: str
    service_cidr: str
    cgroup_driver: CgroupDriver
    fail_swap_on: bool
    cri_socket: str
    bind_port: int = 6443

    @property
    def control_plane_endpoint(self) -> str:
        return f"{self.advertise_address}:{self.bind_port}"


@dataclass
class BootstrapOutcome:
    """Result of one control-plane bootstrap attempt."""
    phase: BootstrapPhase = BootstrapPhase.IDLE
    credential_path: Optional[str] = None
    token: Optional[BootstrapToken] = None
    api_ready: Optional[bool] = None
    overlay_ready: Optional[bool] = None
    failed_step: Optional[str] = None
    failed_substep: Optional[str] = None
    message: str = ""

    @property
    def skipped(self) -> bool:
        return self.phase == BootstrapPhase.SKIPPED
