"""Utility functions for the vodpack packaging pipeline"""

import logging
import os
import shutil
import signal
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Set, Union

from .exceptions import JobCancelledError

logger = logging.getLogger(__name__)


def kill_process_group(process: subprocess.Popen) -> None:
    """Forcibly kill a process started with start_new_session=True and its children"""
    if process.poll() is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, PermissionError):
        # Already gone
        pass


class CancellationToken:
    """Cancellation flag shared by every subprocess of one job.

    Processes register themselves while running; cancelling the token kills
    their process groups. Child tokens are cancelled with their parent but
    can also be cancelled on their own, which is how a failed encode stops
    its siblings without marking the whole job as cancelled.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self._children: List["CancellationToken"] = []
        self.parent = parent
        if parent is not None:
            parent._add_child(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def _add_child(self, child: "CancellationToken") -> None:
        with self._lock:
            self._children.append(child)
            cancelled = self.cancelled
        if cancelled:
            child.cancel()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            processes = list(self._processes)
            children = list(self._children)
        for process in processes:
            logger.debug("Killing process group %d", process.pid)
            kill_process_group(process)
        for child in children:
            child.cancel()

    def register(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.add(process)
            cancelled = self.cancelled
        if cancelled:
            kill_process_group(process)

    def unregister(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; returns True as soon as the token is cancelled"""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, module: str = "pipeline") -> None:
        if self.cancelled:
            raise JobCancelledError("Job was cancelled", module=module)


def format_command(cmd: Sequence[str]) -> str:
    """Render a command one argument pair per line for the log"""
    return " \\\n    ".join(str(part) for part in cmd)


def run_cmd(cmd: List[str], timeout: Optional[float] = None,
            token: Optional[CancellationToken] = None,
            check: bool = True) -> subprocess.CompletedProcess:
    """
    Run a command in its own process group and capture its output.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the process group is killed
        token: Cancellation token the process is registered with while running
        check: Raise CalledProcessError on a non-zero exit

    Returns:
        The completed process with text stdout/stderr

    Raises:
        subprocess.TimeoutExpired: If the timeout elapsed (process group killed)
        subprocess.CalledProcessError: If check is set and the exit code is non-zero
        JobCancelledError: If the token was cancelled before or during the run
    """
    logger.info("Running command:\n%s", format_command(cmd))
    if token is not None:
        token.raise_if_cancelled()

    process = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True
    )
    if token is not None:
        token.register(process)
    try:
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %.1fs: %s", timeout, cmd[0])
            kill_process_group(process)
            stdout, stderr = process.communicate()
            raise subprocess.TimeoutExpired(cmd, timeout, output=stdout, stderr=stderr)
    finally:
        if token is not None:
            token.unregister(process)
        if process.poll() is None:
            kill_process_group(process)
            process.wait()

    if token is not None and token.cancelled:
        raise JobCancelledError(f"Command cancelled: {cmd[0]}", module="run_cmd")

    if stdout:
        logger.debug("Command stdout: %s", stdout)
    if stderr:
        logger.debug("Command stderr: %s", stderr)

    if check and process.returncode != 0:
        logger.error("Command failed with exit code %d: %s", process.returncode, " ".join(cmd))
        logger.error("Error output: %s", stderr)
        raise subprocess.CalledProcessError(process.returncode, cmd, output=stdout, stderr=stderr)
    return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)


def get_file_size(path: Union[str, Path]) -> int:
    """Get file size in bytes"""
    return Path(path).stat().st_size


def get_timestamp() -> str:
    """Get current timestamp in YYYYMMDD_HHMMSS format"""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def format_size(size: int) -> str:
    """Format file size for display"""
    for unit in ['B', 'KiB', 'MiB', 'GiB', 'TiB']:
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TiB"


def get_tree_size(path: Path) -> int:
    """Total size of all files below path"""
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())


def check_dependencies(tools: Sequence[str] = ("ffmpeg", "ffprobe", "packager")) -> bool:
    """Check that every external tool is on PATH"""
    for cmd in tools:
        if shutil.which(cmd) is None:
            logger.error("Required dependency not found: %s", cmd)
            return False
    return True
