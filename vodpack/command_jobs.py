"""
command_jobs.py

Defines a base class for command jobs and specialized implementations for
the pipeline steps that shell out (ffprobe, video encoding, audio
encoding, packaging). Each job translates subprocess failures into the
error type of its stage.
"""

import logging
import subprocess
from typing import List, Optional

from .exceptions import (
    CommandExecutionError, EncodeError, PackagingError, ProbeError, VodpackError
)
from .utils import CancellationToken, run_cmd

logger = logging.getLogger(__name__)


class CommandJob:
    """
    Base class representing a command job.

    Attributes:
        cmd (List[str]): The command to run
    """
    module = "command_jobs"

    def __init__(self, cmd: List[str]):
        self.cmd = cmd

    def make_error(self, message: str, stderr: str = "",
                   exit_code: Optional[int] = None) -> VodpackError:
        return CommandExecutionError(message, module=self.module,
                                     stderr=stderr, exit_code=exit_code)

    def execute(self, timeout: Optional[float] = None,
                token: Optional[CancellationToken] = None) -> subprocess.CompletedProcess:
        """
        Execute the stored command.

        Raises:
            VodpackError: The job's stage error if the command fails, times
                out or cannot be started
            JobCancelledError: If the token is cancelled
        """
        logger.debug("Executing %s: %s", type(self).__name__, " ".join(self.cmd))
        try:
            return run_cmd(self.cmd, timeout=timeout, token=token)
        except subprocess.CalledProcessError as e:
            raise self.make_error(
                f"{self.cmd[0]} exited with code {e.returncode}",
                stderr=e.stderr or "", exit_code=e.returncode
            ) from e
        except subprocess.TimeoutExpired as e:
            raise self.make_error(
                f"{self.cmd[0]} timed out after {e.timeout:.1f}s",
                stderr=e.stderr or ""
            ) from e
        except OSError as e:
            raise self.make_error(f"Could not start {self.cmd[0]}: {e}") from e


class ProbeJob(CommandJob):
    """Job for reading source metadata with ffprobe."""
    module = "probe"

    def make_error(self, message, stderr="", exit_code=None):
        return ProbeError(message, module=self.module, stderr=stderr)


class VideoEncodeJob(CommandJob):
    """Job for encoding one video rendition."""
    module = "video_encoding"

    def __init__(self, cmd: List[str], rendition: str):
        super().__init__(cmd)
        self.rendition = rendition

    def make_error(self, message, stderr="", exit_code=None):
        return EncodeError(message, target=self.rendition, module=self.module,
                           stderr=stderr, exit_code=exit_code)


class AudioEncodeJob(CommandJob):
    """Job for encoding one audio stream."""
    module = "audio_encoding"

    def __init__(self, cmd: List[str], stream_index: int):
        super().__init__(cmd)
        self.stream_index = stream_index

    def make_error(self, message, stderr="", exit_code=None):
        return EncodeError(message, target=f"audio:{self.stream_index}", module=self.module,
                           stderr=stderr, exit_code=exit_code)


class PackageJob(CommandJob):
    """Job for the single packager invocation."""
    module = "packager"

    def make_error(self, message, stderr="", exit_code=None):
        return PackagingError(message, module=self.module,
                              stderr=stderr, exit_code=exit_code)
