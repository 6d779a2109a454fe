"""Shared fixtures: a fake Nornir host/task and a scripted local shell."""

import re
from typing import Callable, List, Optional, Set, Union

import pytest
from nornir.core.task import Result

import utils.linux
from core.models import NodeIdentity, OperatorContext, HardwareProfile, NodeFacts
from core.settings import AppSettings, K8sSettings, ReadinessSettings
from core.state import config as global_config

Output = Union[str, List[str], Callable[[str], str]]


class FakeHost(dict):
    """Behaves like nornir's Host for the parts the tasks use (data access + attributes)."""

    def __init__(self, name: str = "cp-01", **data):
        super().__init__(**data)
        self.name = name
        self.hostname = "127.0.0.1"
        self.username = "pi"
        self.port = 22
        self.platform = "linux_local"
        self.groups = ["k8s_control_plane"]

    def __repr__(self):
        return f"FakeHost({self.name})"


class FakeTask:
    def __init__(self, host: Optional[FakeHost] = None):
        self.host = host or FakeHost()


class FakeShell:
    """
    Stands in for the local subprocess runner.
    Rules match on a command fragment; the most recently added rule wins.
    A list output is consumed one item per call, the last item repeats.
    """

    def __init__(self):
        self.commands: List[str] = []
        self._rules = []

    def on(self, fragment: str, output: Output = "", failed: bool = False) -> "FakeShell":
        self._rules.insert(0, (fragment, output, failed))
        return self

    def run(self, task, command: str) -> Result:
        self.commands.append(command)
        for fragment, output, failed in self._rules:
            if fragment in command:
                return self._result(task, self._render(output, command), failed)
        return self.default(task, command)

    def default(self, task, command: str) -> Result:
        return self._result(task, "", False)

    @staticmethod
    def _render(output: Output, command: str) -> str:
        if callable(output):
            return output(command)
        if isinstance(output, list):
            return output.pop(0) if len(output) > 1 else output[0]
        return output

    @staticmethod
    def _result(task, output: str, failed: bool) -> Result:
        return Result(host=task.host, result=output, failed=failed, stdout=output, stderr="")

    # --- assertions helpers ---

    def ran(self, fragment: str) -> bool:
        return any(fragment in cmd for cmd in self.commands)

    def first(self, fragment: str) -> int:
        for index, cmd in enumerate(self.commands):
            if fragment in cmd:
                return index
        raise AssertionError(f"'{fragment}' never ran. Commands: {self.commands}")

    def last(self, fragment: str) -> int:
        return max(i for i, cmd in enumerate(self.commands) if fragment in cmd)


class StatefulShell(FakeShell):
    """FakeShell that also tracks which paths exist, so removals are observable."""

    TEST_E = re.compile(r"test -e (\S+)")
    PROBE = re.compile(r"find (\S+) -mindepth 1 -maxdepth 1")
    DELETE = re.compile(r"find (\S+) -mindepth 1 -delete")
    RM = re.compile(r"rm -rf (\S+)")

    def __init__(self, paths: Optional[Set[str]] = None):
        super().__init__()
        self.paths: Set[str] = set(paths or ())

    def _children(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        return sorted(p for p in self.paths if p.startswith(prefix))

    def default(self, task, command: str) -> Result:
        match = self.DELETE.search(command)
        if match:
            self.paths -= set(self._children(match.group(1)))
            return self._result(task, "", False)

        match = self.PROBE.search(command)
        if match:
            children = self._children(match.group(1))
            return self._result(task, children[0] if children else "", False)

        match = self.TEST_E.search(command)
        if match:
            path = match.group(1)
            exists = path in self.paths or bool(self._children(path))
            return self._result(task, "__EXISTS__" if exists else "__MISSING__", False)

        match = self.RM.search(command)
        if match:
            path = match.group(1)
            self.paths -= {path, *self._children(path)}
            return self._result(task, "", False)

        return self._result(task, "", False)


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# --- FIXTURES ---

@pytest.fixture(autouse=True)
def quiet_runtime():
    global_config.VERBOSE = False
    global_config.SUDO_PASSWORD = None
    yield


@pytest.fixture
def shell(monkeypatch) -> StatefulShell:
    fake = StatefulShell()
    monkeypatch.setattr(utils.linux, "_run_local_subprocess", fake.run)
    return fake


@pytest.fixture
def task() -> FakeTask:
    return FakeTask()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity() -> NodeIdentity:
    return NodeIdentity(hostname="cp-01", interface="eth0", ip_address="192.168.1.10")


@pytest.fixture
def operator() -> OperatorContext:
    return OperatorContext(user="pi", group="pi", home="/home/pi")


@pytest.fixture
def facts(identity, operator) -> NodeFacts:
    return NodeFacts(identity=identity, operator=operator, hardware=HardwareProfile(), os_id="debian", os_version="12")


@pytest.fixture
def settings() -> AppSettings:
    k8s = K8sSettings(
        local_kubeconfig_path="",
        readiness=ReadinessSettings(settle_seconds=0),
    )
    return AppSettings(k8s=k8s)


@pytest.fixture
def written(monkeypatch, shell):
    """Captures write_file calls (path -> content) instead of staging files on the node."""
    files = {}

    def fake_write_file(task, path, content, **kwargs):
        files[path] = content
        shell.commands.append(f"write {path}")
        return Result(host=task.host, changed=True, result="File updated")

    import tasks.cni
    import tasks.kubeadm_config
    monkeypatch.setattr(tasks.kubeadm_config, "write_file", fake_write_file)
    monkeypatch.setattr(tasks.cni, "write_file", fake_write_file)
    return files
