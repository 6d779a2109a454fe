import datetime
import hashlib
import os
import re
import shlex
import subprocess
import tempfile
import uuid
from typing import Optional, Tuple

from nornir.core.task import Task, Result
from nornir_scrapli.tasks import send_command

from core.models import RemovalOutcome
from core.paths import BACKUP_DIR
from core.state import config as global_config
from utils.logger import sys_logger

SHELL_TOKENS = ("|", "&&", ">", "$(")
EXIT_MARKER = "__RC="
EXIT_PATTERN = re.compile(r"__RC=(\d+)\s*$")


# --- CORE EXECUTION ---

def run_command(task: Task, cmd: str, sudo: bool = False, timeout: Optional[float] = None) -> Result:
    """
    Unified command dispatcher.
    Handles:
    1. Platform dispatch (Local vs Remote SSH)
    2. Sudo privilege escalation (Passwordless vs Password)
    3. Exit codes over SSH (Scrapli only returns the channel output)

    `timeout` overrides Scrapli's per-operation timeout for long commands
    such as kubeadm init, which pulls images.

    Returns:
        Result: A single Nornir Result object (not MultiResult).
    """
    # --- SUDO WRAPPING LOGIC ---
    if sudo:
        if global_config.SUDO_PASSWORD:
            # Basic escaping for the password (single quotes)
            pw = global_config.SUDO_PASSWORD.replace("'", "'\\''")
            # -S reads from stdin, -p '' hides the prompt
            cmd = f"echo '{pw}' | sudo -S -p '' {cmd}"
        else:
            cmd = f"sudo -n {cmd}"

    # --- EXECUTION ---
    if task.host.platform == "linux_local":
        return _run_local_subprocess(task, cmd)

    # task.run returns a MultiResult (list): extract the single Result
    multi_result = task.run(
        task=send_command,
        command=f"{cmd}; echo '{EXIT_MARKER}'$?",
        timeout_ops=timeout
    )
    result = multi_result[0]
    output, exit_code = split_exit_code(str(result.result or ""))
    failed = result.failed or exit_code != 0

    # Handle sudo password requirement failure
    if failed and "sudo: a password is required" in output:
        user = task.host.username
        host = task.host.hostname
        return Result(
            host=task.host,
            failed=True,
            result=f"Sudo privileges missing for user '{user}' on '{host}' (NOPASSWD required or use --ask-sudo-pass)."
        )

    if failed:
        return Result(host=task.host, failed=True, result=f"{output}\nError: exit code {exit_code}", stdout=output)
    return Result(host=task.host, result=output, stdout=output)


def split_exit_code(output: str) -> Tuple[str, int]:
    """
    Strips the trailing exit marker from remote output.
    A missing marker means the command never completed: reported as 255.
    """
    match = EXIT_PATTERN.search(output)
    if not match:
        return output.strip(), 255
    return output[:match.start()].rstrip(), int(match.group(1))


def _run_local_subprocess(task: Task, command: str) -> Result:
    """Internal helper for local execution."""
    # Shell only when the command needs shell features
    use_shell = any(token in command for token in SHELL_TOKENS)

    try:
        if use_shell:
            proc = subprocess.run(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
        else:
            proc = subprocess.run(
                shlex.split(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )

        output = proc.stdout
        if proc.returncode != 0:
            output += f"\nError: {proc.stderr}"

        return Result(
            host=task.host,
            result=output,
            failed=proc.returncode != 0,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )
    except (OSError, ValueError) as e:
        return Result(
            host=task.host,
            failed=True,
            result=f"Local execution exception: {str(e)}",
            stdout="",
            stderr=str(e),
        )


def output_of(res: Result) -> str:
    """Stdout when the dispatcher captured it separately, else the combined result."""
    stdout = getattr(res, "stdout", None)
    if stdout is None:
        stdout = res.result or ""
    return str(stdout).strip()


# --- FILE OPERATIONS ---

def remote_path_exists(task: Task, path: str, sudo: bool = True) -> bool:
    """
    Checks if a file or directory exists.
    Uses explicit markers because Scrapli swallows exit codes.
    """
    cmd = f"test -e {path} && echo '__EXISTS__' || echo '__MISSING__'"
    res = run_command(task, cmd, sudo=sudo)
    return "__EXISTS__" in str(res.result)


def remote_file_exists(task: Task, path: str) -> bool:
    """Checks if a regular file exists."""
    cmd = f"test -f {path} && echo '__EXISTS__' || echo '__MISSING__'"
    res = run_command(task, cmd)
    return "__EXISTS__" in str(res.result)


def read_file(task: Task, path: str) -> str:
    """Reads a remote or local file and returns the content."""
    if not remote_file_exists(task, path):
        return ""

    res = run_command(task, f"cat {path}", sudo=True)  # sudo to be safe reading root files
    if res.failed:
        return ""
    return res.result


def write_file(
        task: Task,
        path: str,
        content: str,
        owner: str = "root:root",
        permissions: str = "644",
        sudo: bool = True
) -> Result:
    """
    Writes content to a remote file using SCP (Stage 1) and Sudo Move (Stage 2).
    Includes automatic versioned backup of an existing file before overwriting.
    """
    # 1. Idempotency Check
    new_hash = hashlib.md5(content.encode('utf-8')).hexdigest()
    current_content = read_file(task, path)
    current_hash = hashlib.md5(current_content.encode('utf-8')).hexdigest()

    if current_content and new_hash == current_hash:
        return Result(host=task.host, changed=False, result="File is up to date")

    # 2. Local Temp File
    with tempfile.NamedTemporaryFile(mode='w', delete=False) as f_local:
        f_local.write(content)
        local_temp_path = f_local.name

    remote_temp_path = f"/tmp/kubern_{uuid.uuid4().hex}"

    try:
        # 3. Transfer
        if task.host.platform == "linux_local":
            res_cp = run_command(task, f"cp {local_temp_path} {remote_temp_path}")
            if res_cp.failed:
                return Result(host=task.host, failed=True, result=f"Copy failed: {res_cp.result}")
        else:
            scp_cmd = [
                "scp", "-P", str(task.host.port or 22),
                "-o", "StrictHostKeyChecking=no",
                "-o", "UserKnownHostsFile=/dev/null",
                local_temp_path,
                f"{task.host.username}@{task.host.hostname}:{remote_temp_path}"
            ]
            proc = subprocess.run(
                scp_cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
            if proc.returncode != 0:
                return Result(host=task.host, failed=True, result=f"SCP Failed: {proc.stderr}")

        # 4. Backup
        if current_content:
            safe_filename = path.replace("/", "_")
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{BACKUP_DIR}/{safe_filename}.{timestamp}.bak"

            run_command(task, f"mkdir -p {BACKUP_DIR}", sudo=sudo)
            res_bkp = run_command(task, f"cp {path} {backup_path}", sudo=sudo)
            if res_bkp.failed:
                run_command(task, f"rm -f {remote_temp_path}")
                return Result(host=task.host, failed=True, result=f"Backup failed: {res_bkp.result}")

        # 5. Move to Destination
        res_mv = run_command(task, f"mv {remote_temp_path} {path}", sudo=sudo)
        if res_mv.failed:
            run_command(task, f"rm -f {remote_temp_path}")
            return Result(host=task.host, failed=True, result=f"Move failed: {res_mv.result}")

        # 6. Permissions
        run_command(task, f"chown {owner} {path}", sudo=sudo)
        run_command(task, f"chmod {permissions} {path}", sudo=sudo)

        return Result(host=task.host, changed=True, result="File updated")

    finally:
        if os.path.exists(local_temp_path):
            os.remove(local_temp_path)


def make_directory(task: Task, path: str, sudo: bool = False) -> Result:
    """Creates a directory (mkdir -p)."""
    return run_command(task, f"mkdir -p {path}", sudo=sudo)


def remove_path(task: Task, path: str, sudo: bool = True) -> RemovalOutcome:
    """
    Best-effort removal of a file or directory tree.
    Absence is a normal outcome, not an error. A failed rm is FAILED, never raised.
    """
    if not remote_path_exists(task, path, sudo=sudo):
        return RemovalOutcome.NOT_FOUND

    res = run_command(task, f"rm -rf {path}", sudo=sudo)
    if res.failed:
        sys_logger.warning(f"[{task.host.name}] Failed to remove {path}: {res.result}")
        return RemovalOutcome.FAILED
    return RemovalOutcome.REMOVED


def clear_directory(task: Task, path: str, sudo: bool = True) -> RemovalOutcome:
    """
    Best-effort removal of everything inside a directory, keeping the directory.
    A missing or already empty directory is NOT_FOUND; a failed delete is FAILED.
    """
    probe = run_command(task, f"find {path} -mindepth 1 -maxdepth 1 2>/dev/null | head -n 1", sudo=sudo)
    if probe.failed or not output_of(probe):
        return RemovalOutcome.NOT_FOUND

    res = run_command(task, f"find {path} -mindepth 1 -delete", sudo=sudo)
    if res.failed:
        sys_logger.warning(f"[{task.host.name}] Failed to clear {path}: {res.result}")
        return RemovalOutcome.FAILED
    return RemovalOutcome.REMOVED


def copy_file(task: Task, src: str, dest: str, sudo: bool = False) -> Result:
    """Copies a file on the remote host, overwriting the destination."""
    return run_command(task, f"cp -f {src} {dest}", sudo=sudo)


def change_owner(task: Task, path: str, owner: str, sudo: bool = True, recursive: bool = False) -> Result:
    """Changes file ownership."""
    flags = "-R " if recursive else ""
    return run_command(task, f"chown {flags}{owner} {path}", sudo=sudo)


def change_mode(task: Task, path: str, mode: str, sudo: bool = True, recursive: bool = False) -> Result:
    """Changes file permissions."""
    flags = "-R " if recursive else ""
    return run_command(task, f"chmod {flags}{mode} {path}", sudo=sudo)


# --- SYSTEM SERVICES ---

def systemctl(task: Task, service: str, action: str, sudo: bool = True) -> Result:
    """
    Manages systemd services.
    Actions: start, stop, restart, reload
    """
    return run_command(task, f"systemctl {action} {service}", sudo=sudo)


def service_active(task: Task, service: str) -> bool:
    """True when systemd reports the unit as active."""
    res = run_command(task, f"systemctl is-active {service}")
    return not res.failed and output_of(res) == "active"


# --- TOOLS / COMMANDS ---

def command_exists(task: Task, command: str) -> bool:
    """Checks if a command exists in PATH (using 'which')."""
    return not run_command(task, f"which {command}").failed


def curl_download(task: Task, url: str, dest: str, sudo: bool = False) -> Result:
    """Downloads a file using curl."""
    return run_command(task, f"curl -fsSL {url} -o {dest}", sudo=sudo)
