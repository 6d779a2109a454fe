"""Unit tests for node fact detection."""

from core.models import NodeFacts, TaskStatus
from tasks.facts import (
    collect_node_facts,
    gather_node_facts,
    get_node_facts,
    is_debian_family,
    parse_os_release,
    parse_route,
)

DEBIAN_12 = 'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\nID=debian\nVERSION_ID="12"\n'
RASPBIAN = 'ID=raspbian\nID_LIKE=debian\nVERSION_ID="11"\n'
FEDORA = 'ID=fedora\nVERSION_ID="39"\n'
ROUTE = "8.8.8.8 via 192.168.1.1 dev eth0 src 192.168.1.10 uid 1000\n    cache\n"
CPUINFO_PI = "processor\t: 0\nHardware\t: BCM2835\nModel\t\t: Raspberry Pi 4 Model B Rev 1.4\n"


def _node(shell, os_release=DEBIAN_12, user="pi", cpuinfo=""):
    shell.on("cat /etc/os-release", os_release)
    shell.on("hostname -s", "cp-01\n")
    shell.on("ip route get", ROUTE)
    shell.on("id -un", f"{user}\n")
    shell.on("id -gn", f"{user}\n")
    shell.on("getent passwd", f"{user}:x:1000:1000:,,,:/home/{user}:/bin/bash\n")
    shell.on("cat /proc/cpuinfo", cpuinfo)
    return shell


class TestParsers:
    def test_parse_route(self):
        assert parse_route(ROUTE) == ("eth0", "192.168.1.10")

    def test_parse_route_without_src(self):
        assert parse_route("unreachable") == (None, None)

    def test_parse_os_release_strips_quotes(self):
        assert parse_os_release(DEBIAN_12)["VERSION_ID"] == "12"

    def test_debian_family(self):
        assert is_debian_family(parse_os_release(DEBIAN_12))
        assert is_debian_family(parse_os_release(RASPBIAN))
        assert is_debian_family({"ID": "kali"})
        assert not is_debian_family(parse_os_release(FEDORA))


class TestCollectNodeFacts:
    def test_generic_debian_node(self, task, shell):
        _node(shell)

        result = collect_node_facts(task)

        facts = result.data
        assert result.success is True
        assert facts.identity.hostname == "cp-01"
        assert facts.identity.interface == "eth0"
        assert facts.identity.ip_address == "192.168.1.10"
        assert facts.operator.owner == "pi:pi"
        assert facts.operator.kubeconfig_path == "/home/pi/.kube/config"
        assert facts.hardware.is_constrained_sbc is False
        assert facts.os_version == "12"

    def test_raspberry_pi_is_detected(self, task, shell):
        _node(shell, os_release=RASPBIAN, cpuinfo=CPUINFO_PI)

        result = collect_node_facts(task)

        assert result.data.hardware.is_constrained_sbc is True
        assert result.data.hardware.model == "Raspberry Pi 4 Model B Rev 1.4"

    def test_non_debian_is_refused(self, task, shell):
        _node(shell, os_release=FEDORA)

        result = collect_node_facts(task)

        assert result.success is False
        assert "Unsupported OS" in result.message
        assert not shell.ran("ip route get")

    def test_root_is_refused(self, task, shell):
        _node(shell, user="root")

        result = collect_node_facts(task)

        assert result.success is False
        assert "root" in result.message

    def test_missing_default_route(self, task, shell):
        _node(shell)
        shell.on("ip route get", "RTNETLINK answers: Network is unreachable", failed=True)

        result = collect_node_facts(task)

        assert result.success is False
        assert "No default route" in result.message


class TestGatherStep:
    def test_facts_are_cached_on_host(self, task, shell):
        _node(shell)

        result = gather_node_facts(task)

        assert result.result.status == TaskStatus.OK
        assert isinstance(task.host["node_facts"], NodeFacts)

        shell.commands.clear()
        assert get_node_facts(task).data is task.host["node_facts"]
        assert shell.commands == []
