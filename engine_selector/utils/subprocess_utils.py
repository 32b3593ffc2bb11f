"""
Subprocess utilities for vendor probe tools.

External tools (nvidia-smi, snapctl) are run with a bounded timeout, a
C locale and their own process group, so a hung tool and every child it
spawned are killed together when the timeout expires.

Usage:
    from engine_selector.utils.subprocess_utils import run_command, run_command_status

    output = run_command(["nvidia-smi", "--query-gpu=memory.total", "--format=csv,noheader"])
    returncode = run_command_status(["snapctl", "is-connected", "intel-npu"])
"""

import os
import signal
import subprocess
from typing import Dict, List, Optional

from engine_selector.utils.logger import log

DEFAULT_TIMEOUT = 30


def _command_env(env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Inherit the caller's environment with a fixed locale."""
    merged = dict(os.environ)
    if env:
        merged.update(env)
    merged["LANG"] = "C"
    return merged


def _run(command: List[str], timeout: int, env: Optional[Dict[str, str]]) -> subprocess.CompletedProcess:
    """
    Run a command in a new session and kill the whole group on timeout.

    Raises:
        subprocess.TimeoutExpired: The command did not finish in time
        FileNotFoundError: The executable does not exist
    """
    proc = subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=_command_env(env),
        start_new_session=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.communicate()
        raise

    return subprocess.CompletedProcess(command, proc.returncode, stdout, stderr)


def run_command(
    command: List[str],
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Run a command and return its normalized output.

    Args:
        command: Command and arguments as list (e.g., ["nvidia-smi", "--query-gpu=name"])
        timeout: Command timeout in seconds (default: 30)
        env: Extra environment variables on top of the inherited environment

    Returns:
        Output with whitespace stripped, or None if the command failed,
        timed out, was not found or printed nothing

    Example:
        output = run_command(["nvidia-smi", "--id=00000000:01:00.0", "--query-gpu=compute_cap", "--format=csv,noheader"])
    """
    try:
        result = _run(command, timeout, env)

        if result.returncode != 0:
            log.debug(f"Command returned non-zero: {result.returncode}")
            # nvidia-smi writes its error messages to stdout
            detail = (result.stderr or result.stdout or "").strip()
            if detail:
                log.debug(f"output: {detail[:200]}")
            return None

        output = result.stdout.strip()
        return output if output else None

    except subprocess.TimeoutExpired:
        log.debug(f"Command timed out after {timeout}s: {' '.join(command[:3])}...")
        return None
    except FileNotFoundError:
        log.debug(f"Command not found: {command[0]}")
        return None
    except OSError as e:
        log.debug(f"Command execution failed: {e}")
        return None


def run_command_status(
    command: List[str],
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """
    Run a command for its exit status only.

    Unlike run_command, failures to start or finish the command are not
    folded into the result: callers need to tell "answered no" apart from
    "could not ask".

    Returns:
        The command's exit code

    Raises:
        subprocess.TimeoutExpired: The command did not finish in time
        FileNotFoundError: The executable does not exist
    """
    result = _run(command, timeout, env)
    if result.returncode != 0 and result.stderr:
        log.debug(f"{command[0]} stderr: {result.stderr.strip()[:200]}")
    return result.returncode
