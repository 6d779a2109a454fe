import logging
from pathlib import Path

from rich.console import Console
from rich.theme import Theme

# File logger for START/END traces and stack traces.
# Silent until setup_file_logging() is called by the CLI.
sys_logger = logging.getLogger("kubern")
sys_logger.addHandler(logging.NullHandler())


def setup_file_logging(log_file: str, level: int = logging.INFO) -> logging.Logger:
    """Attaches a file handler to sys_logger (once per path)."""
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    for handler in sys_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path.resolve():
            return sys_logger

    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    sys_logger.addHandler(handler)
    sys_logger.setLevel(level)
    return sys_logger


class ConsoleLogger:
    def __init__(self):
        # Custom colour theme
        self.custom_theme = Theme({
            "success": "bold green",
            "error": "bold red",
            "skip": "bold cyan",
            "warning": "bold yellow",
            "info": "dim white"
        })
        self.console = Console(theme=self.custom_theme)

        # Current nesting depth
        self.indent_level = 0

    def log_step(self, status: str, msg: str):
        """
        Prints one line for the current step, indented to the current level.
        """
        icons = {
            "success": "✅",
            "error": "❌",
            "skip": "🔵",
            "warning": "🔶",
            "info": "ℹ️"
        }
        icon = icons.get(status, "•")
        indent = "   " * self.indent_level

        self.console.print(f"{indent}{icon} [{status}]{msg}[/{status}]")

    def workflow(self, name: str):
        """Context manager for a goal (top level)."""
        return self._Context(self, name, type="workflow")

    def task(self, name: str):
        """Context manager for a task (nested level)."""
        return self._Context(self, name, type="task")

    # --- Inner class (The Context Manager) ---
    class _Context:
        def __init__(self, logger, name, type):
            self.logger = logger
            self.name = name
            self.type = type

        def __enter__(self):
            indent = "   " * self.logger.indent_level

            if self.type == "workflow":
                self.logger.console.print(f"\n{indent}🚀 [bold blue]Goal: {self.name}[/bold blue]")
            else:
                self.logger.console.print(f"{indent}🔸 [bold white]Group: {self.name}[/bold white]")

            self.logger.indent_level += 1
            return self

        def __exit__(self, exc_type, exc_value, traceback):
            self.logger.indent_level -= 1

            if exc_type:
                self.logger.log_step("error", f"Interrupted by error: {exc_value}")
                # Let the error stop the program
                return False


logger = ConsoleLogger()
