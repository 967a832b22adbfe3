"""
Background process supervision.

Spawns detached backend daemons with their output redirected to a log
file, and finds or terminates them again from later invocations by pid
or by command line.
"""

from __future__ import annotations

import os
import re
import subprocess
from collections import deque
from pathlib import Path

import psutil

from subcode_tunnel.constants import LOG_TAIL_LINES, PROCESS_TERMINATE_TIMEOUT
from subcode_tunnel.exceptions import NotInstalledError
from subcode_tunnel.logging import get_logger

logger = get_logger(__name__)


def spawn_background(args: list[str], log_path: Path) -> subprocess.Popen:
    """
    Start a long-running process detached from this invocation.

    The process gets its own session so it survives the CLI exiting,
    and writes stdout and stderr to log_path (truncated first).

    Args:
        args: Command and arguments
        log_path: Log file receiving the process output

    Returns:
        The spawned process

    Raises:
        NotInstalledError: If the executable is not found
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("w") as log_file:
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise NotInstalledError(args[0]) from None
    logger.info("Spawned background process", pid=process.pid, log=str(log_path))
    return process


def find_processes(pattern: str) -> list[psutil.Process]:
    """
    Find processes whose command line matches a regular expression.

    Args:
        pattern: Regex searched in the space-joined command line

    Returns:
        Matching processes, excluding the current one
    """
    regex = re.compile(pattern)
    own_pid = os.getpid()
    matches = []
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            cmdline = proc.info["cmdline"] or []
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if proc.info["pid"] == own_pid or not cmdline:
            continue
        if regex.search(" ".join(cmdline)):
            matches.append(proc)
    return matches


def terminate_process(pid: int, timeout: float = PROCESS_TERMINATE_TIMEOUT) -> bool:
    """
    Terminate a process, killing it if it ignores SIGTERM.

    Args:
        pid: Process ID
        timeout: Seconds to wait after SIGTERM before SIGKILL

    Returns:
        True if a process was signalled, False if it was already gone
    """
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
            logger.info("Terminated process", pid=pid)
        except psutil.TimeoutExpired:
            proc.kill()
            logger.warning("Killed process (timeout)", pid=pid)
        return True
    except psutil.NoSuchProcess:
        logger.debug("Process already gone", pid=pid)
        return False


def terminate_matching(pattern: str, timeout: float = PROCESS_TERMINATE_TIMEOUT) -> list[int]:
    """
    Terminate every process whose command line matches pattern.

    Returns:
        PIDs that were signalled
    """
    stopped = []
    for proc in find_processes(pattern):
        if terminate_process(proc.pid, timeout=timeout):
            stopped.append(proc.pid)
    return stopped


def is_alive(pid: int) -> bool:
    """Check whether a process exists and is not a zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return psutil.pid_exists(pid)


def tail(path: Path, lines: int = LOG_TAIL_LINES) -> str:
    """
    Return the last lines of a log file.

    Returns:
        The tail as a single string, or "" when the file is unreadable
    """
    try:
        with path.open(errors="replace") as f:
            return "".join(deque(f, maxlen=lines))
    except OSError:
        return ""


def process_matches(pid: int, pattern: str) -> bool:
    """
    Check that pid is alive and its command line matches pattern.

    Guards against signalling an unrelated process that reused a
    recorded pid.
    """
    try:
        cmdline = " ".join(psutil.Process(pid).cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False
    return re.search(pattern, cmdline) is not None
