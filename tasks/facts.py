from typing import Optional, Tuple

from nornir.core.task import Task, Result

from core.decorators import automated_step, automated_substep
from core.models import (
    TaskStatus,
    StandardResult,
    SubTaskResult,
    NodeIdentity,
    OperatorContext,
    HardwareProfile,
    NodeFacts,
)
from tasks import fail
from utils.linux import run_command, output_of

SUPPORTED_IDS = ["debian", "kali"]
SBC_MARKER = "Raspberry Pi"
ROUTE_PROBE = "8.8.8.8"


def parse_route(output: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Extracts (interface, source address) from `ip route get` output, e.g.
    '8.8.8.8 via 192.168.1.1 dev eth0 src 192.168.1.20 uid 1000'.
    """
    tokens = output.split()
    interface = address = None
    for key, value in zip(tokens, tokens[1:]):
        if key == "dev" and interface is None:
            interface = value
        elif key == "src" and address is None:
            address = value
    return interface, address


def parse_os_release(content: str) -> dict:
    data = {}
    for line in content.splitlines():
        if "=" in line:
            key, value = line.split("=", 1)
            data[key] = value.strip().strip('"')
    return data


def is_debian_family(os_data: dict) -> bool:
    distro_id = os_data.get("ID", "").lower()
    like = os_data.get("ID_LIKE", "").lower().split()
    return distro_id in SUPPORTED_IDS or "debian" in like


# --- SUB-STEPS ---

@automated_substep("Read OS Release")
def _get_os_release(task: Task) -> SubTaskResult:
    """Parses /etc/os-release and refuses non-Debian systems."""
    res = run_command(task, "cat /etc/os-release")
    if res.failed:
        return SubTaskResult(success=False, message="Could not read /etc/os-release")

    data = parse_os_release(output_of(res))
    if not is_debian_family(data):
        return SubTaskResult(
            success=False,
            message=f"Unsupported OS: {data.get('ID', 'unknown')}. Only Debian-based systems are supported."
        )

    version = data.get("VERSION_ID", "unknown")
    message = f"OS Verified: {data.get('ID')} {version}"
    try:
        if int(version.split(".")[0]) < 10:
            message += " (older than Debian 10, may not be fully supported)"
    except ValueError:
        pass

    return SubTaskResult(success=True, message=message, data=data)


@automated_substep("Detect Node Identity")
def _detect_identity(task: Task) -> SubTaskResult:
    """Primary IP is the source address of the default route."""
    res_host = run_command(task, "hostname -s")
    if res_host.failed:
        return SubTaskResult(success=False, message="Could not read hostname")

    res_route = run_command(task, f"ip route get {ROUTE_PROBE}")
    if res_route.failed:
        return SubTaskResult(success=False, message=f"No default route: {res_route.result}")

    interface, address = parse_route(output_of(res_route))
    if not interface or not address:
        return SubTaskResult(success=False, message=f"Could not parse default route: {output_of(res_route)}")

    identity = NodeIdentity(hostname=output_of(res_host), interface=interface, ip_address=address)
    return SubTaskResult(success=True, message=f"{identity.hostname} {identity.ip_address} ({interface})", data=identity)


@automated_substep("Detect Operator Account")
def _detect_operator(task: Task) -> SubTaskResult:
    """
    Resolves the connecting (non-root) user, its primary group and home.
    """
    res_user = run_command(task, "id -un")
    res_group = run_command(task, "id -gn")
    if res_user.failed or res_group.failed:
        return SubTaskResult(success=False, message="Could not resolve current user")

    user = output_of(res_user)
    if user == "root":
        return SubTaskResult(
            success=False,
            message="Connected as root. Use a regular user with sudo privileges."
        )

    res_home = run_command(task, f"getent passwd {user}")
    fields = output_of(res_home).split(":")
    if res_home.failed or len(fields) < 6 or not fields[5]:
        return SubTaskResult(success=False, message=f"Could not resolve home directory of {user}")

    operator = OperatorContext(user=user, group=output_of(res_group), home=fields[5])
    return SubTaskResult(success=True, message=f"Operator: {operator.owner} ({operator.home})", data=operator)


@automated_substep("Detect Hardware Profile")
def _detect_hardware(task: Task) -> SubTaskResult:
    res = run_command(task, "cat /proc/cpuinfo")
    cpuinfo = "" if res.failed else output_of(res)

    model = ""
    for line in cpuinfo.splitlines():
        if line.lower().startswith("model") and ":" in line:
            model = line.split(":", 1)[1].strip()

    profile = HardwareProfile(is_constrained_sbc=SBC_MARKER in cpuinfo, model=model)
    label = "Raspberry Pi detected" if profile.is_constrained_sbc else "Generic hardware"
    return SubTaskResult(success=True, message=label, data=profile)


def collect_node_facts(task: Task) -> SubTaskResult:
    """
    Runs all detections once. Returns NodeFacts in data.
    """
    s1 = _get_os_release(task)
    if not s1.success: return s1

    s2 = _detect_identity(task)
    if not s2.success: return s2

    s3 = _detect_operator(task)
    if not s3.success: return s3

    s4 = _detect_hardware(task)
    if not s4.success: return s4

    facts = NodeFacts(
        identity=s2.data,
        operator=s3.data,
        hardware=s4.data,
        os_id=s1.data.get("ID", "unknown"),
        os_version=s1.data.get("VERSION_ID", "unknown"),
    )
    return SubTaskResult(success=True, message="Facts collected", data=facts)


def get_node_facts(task: Task) -> SubTaskResult:
    """Cached facts from gather_node_facts, or a fresh detection."""
    cached = task.host.get("node_facts")
    if isinstance(cached, NodeFacts):
        return SubTaskResult(success=True, message="Facts from cache", data=cached)
    return collect_node_facts(task)


# --- MAIN TASK ---

@automated_step("Gather Node Facts")
def gather_node_facts(task: Task) -> Result:
    """
    Detects OS, network identity, operator account and hardware.
    Fails if the OS is not Debian-based.
    """
    step = collect_node_facts(task)
    if not step.success: return fail(task, step)

    facts: NodeFacts = step.data

    # Save facts to host context for later tasks
    task.host["node_facts"] = facts

    return Result(
        host=task.host,
        result=StandardResult(
            status=TaskStatus.OK,
            message=(
                f"{facts.os_id} {facts.os_version}, {facts.identity.hostname} "
                f"{facts.identity.ip_address} via {facts.identity.interface}"
                f"{' [Raspberry Pi]' if facts.hardware.is_constrained_sbc else ''}"
            ),
            data=facts
        )
    )
