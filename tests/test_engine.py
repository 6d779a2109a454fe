"""Unit tests for goal execution over a real (local) Nornir inventory."""

import pytest
from nornir.core.task import Result

import core.engine
from core.engine import EngineError, MatrixEngine
from core.models import OperatorDecisions, StandardResult, TaskStatus
from core.settings import AppSettings


@pytest.fixture
def nornir_config(tmp_path):
    (tmp_path / "hosts.yaml").write_text(
        "cp-01:\n"
        "  hostname: 127.0.0.1\n"
        "  platform: linux_local\n"
        "  groups: [k8s_control_plane]\n"
        "worker-01:\n"
        "  hostname: 127.0.0.2\n"
        "  platform: linux_local\n"
        "  groups: [k8s_worker]\n"
    )
    (tmp_path / "groups.yaml").write_text("k8s_control_plane: {}\nk8s_worker: {}\n")
    config = tmp_path / "config.yaml"
    config.write_text(
        "inventory:\n"
        "  plugin: SimpleInventory\n"
        "  options:\n"
        f"    host_file: {tmp_path / 'hosts.yaml'}\n"
        f"    group_file: {tmp_path / 'groups.yaml'}\n"
        "runner:\n"
        "  plugin: serial\n"
        "logging:\n"
        "  enabled: false\n"
    )
    return str(config)


def _task(status, calls):
    def step(task):
        calls.append((step.__name__, task.host.name, task.host.get("operator_decisions")))
        return Result(
            host=task.host,
            failed=status == TaskStatus.FAILED,
            result=StandardResult(status, f"{status.value} on {task.host.name}")
        )
    return step


class TestMatrixEngine:
    def test_bad_inventory_raises(self, tmp_path):
        with pytest.raises(EngineError):
            MatrixEngine(config_file=str(tmp_path / "nope.yaml"), settings=AppSettings())

    def test_unknown_goal(self, nornir_config):
        engine = MatrixEngine(config_file=nornir_config, settings=AppSettings())

        assert engine.run("UPGRADE") is False

    def test_groups_run_in_order_with_injected_data(self, nornir_config, monkeypatch):
        calls = []
        decisions = OperatorDecisions(init_control_plane=True)
        monkeypatch.setattr(core.engine, "TASK_REGISTRY", {
            "INIT": {
                "k8s_control_plane": [_task(TaskStatus.CHANGED, calls)],
                "k8s_worker": [_task(TaskStatus.OK, calls)],
            }
        })
        engine = MatrixEngine(config_file=nornir_config, settings=AppSettings(), decisions=decisions)

        assert engine.run("INIT") is True
        assert [host for _, host, _ in calls] == ["cp-01", "worker-01"]
        assert all(d is decisions for _, _, d in calls)
        assert isinstance(engine.nr.inventory.defaults.data["app_config"], AppSettings)

    def test_failure_halts_remaining_groups(self, nornir_config, monkeypatch):
        calls = []
        monkeypatch.setattr(core.engine, "TASK_REGISTRY", {
            "INIT": {
                "k8s_control_plane": [_task(TaskStatus.FAILED, calls), _task(TaskStatus.OK, calls)],
                "k8s_worker": [_task(TaskStatus.OK, calls)],
            }
        })
        engine = MatrixEngine(config_file=nornir_config, settings=AppSettings())

        assert engine.run("INIT") is False
        assert len(calls) == 1

    def test_target_filter(self, nornir_config, monkeypatch):
        calls = []
        monkeypatch.setattr(core.engine, "TASK_REGISTRY", {
            "VERIFY": {
                "k8s_control_plane": [_task(TaskStatus.OK, calls)],
                "k8s_worker": [_task(TaskStatus.OK, calls)],
            }
        })
        engine = MatrixEngine(config_file=nornir_config, settings=AppSettings())

        assert engine.run("VERIFY", target_filter="worker-01") is True
        assert [host for _, host, _ in calls] == ["worker-01"]

    def test_declined_init_succeeds_on_unprepared_node(self, nornir_config, shell):
        shell.on("cat /etc/os-release", 'ID=debian\nVERSION_ID="12"\n')
        shell.on("hostname -s", "cp-01\n")
        shell.on("ip route get", "8.8.8.8 via 192.168.1.1 dev eth0 src 192.168.1.10\n")
        shell.on("id -un", "pi\n")
        shell.on("id -gn", "pi\n")
        shell.on("getent passwd", "pi:x:1000:1000:,,,:/home/pi:/bin/bash\n")
        shell.on("systemctl is-active", "inactive\n", failed=True)
        engine = MatrixEngine(
            config_file=nornir_config,
            settings=AppSettings(),
            decisions=OperatorDecisions(init_control_plane=False)
        )

        assert engine.run("INIT") is True
        assert not shell.ran("systemctl is-active")
        assert not shell.ran("kubeadm")
