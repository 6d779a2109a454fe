import time
from functools import wraps

from nornir.core.task import Task, Result
from rich.console import Console
from rich.markup import escape

from core.events import event_bus
from core.models import TaskStatus, StandardResult, SubTaskResult
from core.state import config as global_config
from utils.logger import sys_logger

console = Console()


def automated_step(step_name: str):
    """
    Wraps a Nornir step run by MatrixEngine.

    Every run is traced to the file log and the event bus (START, then the
    final TaskStatus). An exception never escapes: it is logged with its
    traceback and returned as a FAILED StandardResult, so the engine can
    halt the goal cleanly.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> Result:
            host_name = task.host.name
            started = time.monotonic()
            sys_logger.info(f"START task='{step_name}' host='{host_name}'")
            event_bus.publish(step_name, host_name, "START")

            try:
                result = func(task, *args, **kwargs)
            except Exception as e:
                sys_logger.error(
                    f"CRITICAL EXCEPTION in '{step_name}' host='{host_name}': {e}",
                    exc_info=True
                )
                event_bus.publish(step_name, host_name, "CRASH", str(e))

                return Result(
                    host=task.host,
                    failed=True,
                    result=StandardResult(
                        status=TaskStatus.FAILED,
                        message=f"System Error: {str(e)}"
                    )
                )

            status, message = "UNKNOWN", ""
            if isinstance(result.result, StandardResult):
                status = result.result.status.value
                message = result.result.message

            elapsed = time.monotonic() - started
            sys_logger.info(f"END task='{step_name}' host='{host_name}' status='{status}' took={elapsed:.1f}s")
            event_bus.publish(step_name, host_name, status, message)
            return result

        return wrapper

    return decorator


def automated_substep(step_name: str):
    """
    Wraps one sub-step (reset, render, init, wait...) inside a step.

    Verbose mode shows a spinner that collapses into a ✔/✖ line. The outcome
    is always published as OK / FAIL / CRASH; a crash becomes a failed
    SubTaskResult carrying the exception.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> SubTaskResult:
            host_name = task.host.name
            started = time.monotonic()

            sys_logger.info(f"[{host_name}] [SUB-START] '{step_name}'")
            event_bus.publish(step_name, host_name, "START")

            try:
                if global_config.VERBOSE:
                    # The spinner line disappears when the block ends
                    with console.status(f"    [dim]🔹 {step_name}...[/dim]", spinner="dots"):
                        result = func(task, *args, **kwargs)
                else:
                    result = func(task, *args, **kwargs)
            except Exception as e:
                error_msg = f"Exception in '{step_name}': {str(e)}"
                sys_logger.error(f"[{host_name}] [SUB-CRASH] {error_msg}", exc_info=e)
                event_bus.publish(step_name, host_name, "CRASH", str(e))

                if global_config.VERBOSE:
                    console.print(f"    [bold red]💥 CRASH {step_name}[/bold red]: {escape(str(e))}")

                return SubTaskResult(success=False, message=error_msg, exception=e, step=step_name)

            if result.step is None:
                result.step = step_name

            elapsed = time.monotonic() - started
            status_log = "OK" if result.success else "FAIL"
            log_msg = f"[{host_name}] [SUB-END] '{step_name}' -> {status_log} ({result.message}) took={elapsed:.1f}s"
            event_bus.publish(step_name, host_name, status_log, result.message)

            if result.success:
                sys_logger.info(log_msg)
                if global_config.VERBOSE:
                    console.print(f"    [green]✔[/green] [dim]{step_name}[/dim]")
            else:
                sys_logger.warning(log_msg)
                if global_config.VERBOSE:
                    console.print(f"    [red]✖ {step_name}[/red]: [dim]{escape(result.message)}[/dim]")

            return result

        return wrapper

    return decorator
