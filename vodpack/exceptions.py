"""Custom exceptions for the vodpack packaging pipeline"""

from typing import Optional


class VodpackError(Exception):
    """Base exception for all vodpack errors"""
    def __init__(self, message: str, module: str = None):
        self.message = message
        self.module = module or "unknown"
        super().__init__(f"[{self.module}] {self.message}")


class CommandExecutionError(VodpackError):
    """An external command failed, timed out or could not be started"""
    def __init__(self, message: str, module: str = None,
                 stderr: str = "", exit_code: Optional[int] = None):
        super().__init__(message, module)
        self.stderr = stderr
        self.exit_code = exit_code


class ProbeError(VodpackError):
    """Source cannot be inspected or has no usable video stream"""
    def __init__(self, message: str, module: str = "probe", stderr: str = ""):
        super().__init__(f"Probe error: {message}", module)
        self.stderr = stderr


class NoApplicableResolutionError(VodpackError):
    """Source is narrower than the smallest rung of the ladder"""
    def __init__(self, width: int, module: str = "resolution"):
        super().__init__(
            f"No applicable resolution for source width {width}", module
        )
        self.width = width


class EncodeError(VodpackError):
    """An encode subprocess failed or timed out

    ``target`` names the rendition (``"720p"``) or audio stream
    (``"audio:1"``) that failed.
    """
    def __init__(self, message: str, target: str, module: str = "encoding",
                 stderr: str = "", exit_code: Optional[int] = None):
        super().__init__(f"Encoding error ({target}): {message}", module)
        self.target = target
        self.stderr = stderr
        self.exit_code = exit_code


class SubtitleConversionError(VodpackError):
    """A legacy subtitle file could not be converted"""
    def __init__(self, message: str, module: str = "subtitles"):
        super().__init__(f"Subtitle conversion error: {message}", module)


class PackagingError(VodpackError):
    """The packager failed, timed out or was handed missing inputs"""
    def __init__(self, message: str, module: str = "packager",
                 stderr: str = "", exit_code: Optional[int] = None):
        super().__init__(f"Packaging error: {message}", module)
        self.stderr = stderr
        self.exit_code = exit_code


class JobCancelledError(VodpackError):
    """The job was cancelled while a stage was running"""


class JobStateError(VodpackError):
    """A job was driven through an invalid state transition"""


class ConfigurationError(VodpackError):
    """Error in configuration/setup"""


class DependencyError(VodpackError):
    """Missing required dependencies"""
