from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.panel import Panel

from core.engine import MatrixEngine, EngineError
from core.models import OperatorDecisions, BootstrapToken
from core.settings import load_settings
from core.state import config as global_config
from utils.logger import setup_file_logging, sys_logger

app = typer.Typer(
    help="Kubern - single control-plane Kubernetes bootstrap for Debian nodes",
    add_completion=True,
    no_args_is_help=True
)


@app.callback()
def main(
        ctx: typer.Context,
        quiet: bool = typer.Option(
            False, "--quiet", "-q",
            help="Disable detailed sub-step logging (Silent Mode)."
        ),
        config_file: Path = typer.Option(
            "cluster_config.yaml", "--config", "-c",
            help="Path to the cluster configuration YAML file.",
            dir_okay=False
        ),
        inventory_config: Path = typer.Option(
            "config.yaml", "--inventory-config", "-i",
            help="Path to the Nornir configuration file.",
            dir_okay=False
        ),
        log_file: Path = typer.Option(
            "logs/kubern.log", "--log-file",
            help="Where START/END traces and stack traces are written."
        ),
        ask_sudo_pass: bool = typer.Option(
            False, "--ask-sudo-pass", "-K",
            help="Prompt for the sudo password instead of requiring NOPASSWD."
        )
):
    """
    Kubern CLI.
    Common entry point for all commands.
    """
    global_config.VERBOSE = not quiet
    global_config.CONFIG_FILE = str(config_file)
    global_config.NORNIR_CONFIG = str(inventory_config)
    global_config.LOG_FILE = str(log_file)

    setup_file_logging(global_config.LOG_FILE)

    if ask_sudo_pass:
        global_config.SUDO_PASSWORD = typer.prompt("Sudo password", hide_input=True)

    if ctx.invoked_subcommand:
        subtitle = "Nornir Engine"
        subtitle += " (Quiet Mode)" if quiet else " (Verbose Mode)"

        rprint(Panel.fit(
            "[bold white]Kubern Cluster Bootstrap[/bold white]",
            border_style="blue",
            subtitle=subtitle
        ))


def run_goal(goal: str, decisions: Optional[OperatorDecisions] = None, target: Optional[str] = None):
    """
    Builds the engine and runs one goal. Exits 1 on failure.
    """
    try:
        settings = load_settings(global_config.CONFIG_FILE)
        engine = MatrixEngine(settings=settings, decisions=decisions)
    except EngineError as e:
        rprint(f"[bold red]❌ Init Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    if not engine.run(goal, target_filter=target):
        sys_logger.error(f"Goal {goal} failed")
        raise typer.Exit(code=1)


@app.command()
def init(
        control_plane: Optional[bool] = typer.Option(
            None, "--control-plane/--no-control-plane",
            help="Initialize this node as the control plane. Asked interactively if omitted."
        ),
        install_cni: Optional[bool] = typer.Option(
            None, "--install-cni/--skip-cni",
            help="Install the flannel overlay after init. Asked interactively if omitted."
        ),
        target: str = typer.Option(
            None, "--target", "-t",
            help="Run only on a specific host of the control plane group."
        )
):
    """
    Resets the node and bootstraps a single control-plane cluster.
    """
    if control_plane is None:
        control_plane = typer.confirm("Initialize this node as a Kubernetes control plane?", default=False)

    if control_plane and install_cni is None:
        install_cni = typer.confirm("Install the flannel pod network?", default=True)

    decisions = OperatorDecisions(init_control_plane=control_plane, install_overlay=bool(install_cni))
    run_goal("INIT", decisions=decisions, target=target)


@app.command()
def join(
        endpoint: str = typer.Option(..., "--endpoint", help="Control plane address, e.g. 192.168.1.10:6443"),
        token: str = typer.Option(..., "--token", help="Bootstrap token printed by 'init'."),
        ca_cert_hash: str = typer.Option(..., "--ca-cert-hash", help="sha256:<hash> printed by 'init'."),
        target: str = typer.Option(
            None, "--target", "-t",
            help="Run only on a specific worker host."
        )
):
    """
    Resets worker nodes and joins them to an existing control plane.
    """
    join_token = BootstrapToken(token=token, ca_cert_hash=ca_cert_hash, control_plane_endpoint=endpoint)
    run_goal("JOIN", decisions=OperatorDecisions(join_token=join_token), target=target)


@app.command()
def reset(
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
        target: str = typer.Option(
            None, "--target", "-t",
            help="Run only on a specific host."
        )
):
    """
    [Destructive] Removes all cluster state from the nodes.
    """
    if not yes:
        typer.confirm("This wipes /etc/kubernetes and /var/lib/kubelet. Continue?", abort=True)
    run_goal("RESET", target=target)


@app.command()
def verify(
        target: str = typer.Option(
            None, "--target", "-t",
            help="Run only on a specific host."
        )
):
    """
    [Read-only] Reports tool versions and cluster reachability.
    """
    run_goal("VERIFY", target=target)


if __name__ == "__main__":
    app()
