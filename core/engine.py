from typing import Optional

from nornir import InitNornir
from nornir.core.task import AggregatedResult
from rich.markup import escape
from rich.panel import Panel

from core.models import TaskStatus, StandardResult, OperatorDecisions, BootstrapOutcome
from core.registry import TASK_REGISTRY, GROUP_EXECUTION_ORDER
from core.settings import AppSettings, load_settings
from core.state import config as global_config
from utils.logger import logger, sys_logger

# TaskStatus -> ConsoleLogger theme style
STATUS_STYLES = {
    TaskStatus.OK: "success",
    TaskStatus.CHANGED: "warning",
    TaskStatus.WARNING: "warning",
    TaskStatus.SKIPPED: "skip",
}


class EngineError(Exception):
    """Nornir or the application settings could not be loaded."""


class MatrixEngine:
    def __init__(
            self,
            config_file: Optional[str] = None,
            settings: Optional[AppSettings] = None,
            decisions: Optional[OperatorDecisions] = None
    ):
        self.config_file = config_file or global_config.NORNIR_CONFIG
        self.settings = settings
        self.decisions = decisions or OperatorDecisions()
        self.nr = None
        self._initialize()

    def _initialize(self):
        """Initializes Nornir and injects configuration."""
        try:
            if self.settings is None:
                self.settings = load_settings(global_config.CONFIG_FILE)
            self.nr = InitNornir(config_file=self.config_file)
        except Exception as e:
            sys_logger.error(f"Engine init failed: {e}", exc_info=True)
            raise EngineError(str(e)) from e

        # Inject settings and operator answers into global defaults
        self.nr.inventory.defaults.data["app_config"] = self.settings
        self.nr.inventory.defaults.data["operator_decisions"] = self.decisions

    def run(self, goal: str, target_filter: Optional[str] = None) -> bool:
        """
        Executes the pipeline for the specified Goal.
        Returns False when a task failed critically.
        """
        if goal not in TASK_REGISTRY:
            logger.log_step("error", f"Goal '{goal}' not defined in Registry.")
            return False

        sys_logger.info(f"GOAL '{goal}' target='{target_filter or 'all'}'")

        with logger.workflow(goal):
            # Iterate over groups in defined order (CP -> Workers)
            for group_name in GROUP_EXECUTION_ORDER:

                tasks = TASK_REGISTRY[goal].get(group_name, [])
                if not tasks:
                    continue

                group_hosts = self.nr.filter(filter_func=lambda h: group_name in h.groups)

                if target_filter:
                    group_hosts = group_hosts.filter(name=target_filter)

                if len(group_hosts.inventory.hosts) == 0:
                    continue

                with logger.task(f"{group_name} ({len(group_hosts.inventory.hosts)} hosts)"):
                    for task_func in tasks:
                        task_name = task_func.__name__

                        agg_result = group_hosts.run(task=task_func, name=task_name)

                        if self._handle_results(agg_result):
                            logger.log_step("error", f"Execution halted: critical failure in group {group_name}")
                            sys_logger.error(f"GOAL '{goal}' halted in group '{group_name}' at '{task_name}'")
                            return False

        sys_logger.info(f"GOAL '{goal}' completed")
        return True

    def _handle_results(self, agg_result: AggregatedResult) -> bool:
        """
        Analyzes results, prints status and decides whether to stop the engine.
        Returns True if execution should stop (Critical Failure).
        """
        has_critical_failure = False

        for host, multi_res in agg_result.items():
            task_result = multi_res[0]
            payload = task_result.result

            # Fallback if the task did not return a StandardResult (e.g. unexpected error)
            if not isinstance(payload, StandardResult):
                status = TaskStatus.FAILED if task_result.failed else TaskStatus.OK
                msg = escape(str(payload))
            else:
                status = payload.status
                msg = escape(payload.message)

            if status == TaskStatus.FAILED:
                logger.log_step("error", f"{task_result.name}: {msg} (Host: {host})")
                has_critical_failure = True
            else:
                logger.log_step(STATUS_STYLES.get(status, "info"), f"{task_result.name} ({host}): {msg}")

            if isinstance(payload, StandardResult) and isinstance(payload.data, BootstrapOutcome):
                self._print_outcome(host, payload.data)

        return has_critical_failure

    @staticmethod
    def _print_outcome(host: str, outcome: BootstrapOutcome):
        if outcome.token is None:
            return
        lines = [
            f"[bold]Kubeconfig:[/bold] {outcome.credential_path}",
            "",
            "[bold]Join workers with:[/bold]",
            f"[white]{outcome.token.join_command}[/white]",
        ]
        logger.console.print(Panel("\n".join(lines), title=f"🎉 {host} ready", border_style="green"))
