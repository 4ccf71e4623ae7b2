"""Configuration settings for the vodpack packaging pipeline

This module centralizes all configuration settings including:
- Working directory and log locations
- External tool names (ffmpeg, ffprobe, packager)
- Encoding and segmenting parameters
- Concurrency and timeout limits

User-configurable values come from environment variables; the
PipelineConfig dataclass bundles them into the typed structure that is
handed to every stage.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import psutil

from .exceptions import ConfigurationError
from .resolution import RESOLUTION_PROFILES, ResolutionProfile


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}",
                                 module="config") from e


# Working root for per-job temp trees
WORKING_ROOT = Path(os.environ.get("VODPACK_WORKDIR", "/tmp/vodpack"))

# LOG_DIR: user definable with default of "$HOME/vodpack_logs"
LOG_DIR = Path(os.environ.get("VODPACK_LOG_DIR", str(Path.home() / "vodpack_logs")))

# Logging configuration
LOG_LEVEL = os.environ.get("VODPACK_LOG_LEVEL", "INFO")

# External tools
FFMPEG_BIN = os.environ.get("VODPACK_FFMPEG", "ffmpeg")
FFPROBE_BIN = os.environ.get("VODPACK_FFPROBE", "ffprobe")
PACKAGER_BIN = os.environ.get("VODPACK_PACKAGER", "packager")

# Encoding settings
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "fast"
VIDEO_PROFILE = "main"
VIDEO_CRF = 20
PIX_FMT = "yuv420p"
ENCODER_THREADS = 2
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "128k"

# Packaging settings
SEGMENT_DURATION = 6  # Seconds

# Scheduling settings
MEMORY_RESERVE = 0.2  # Keep 20% of system memory free before starting an encode
TASK_STAGGER_DELAY = 0.2  # Poll interval while waiting for memory headroom


def default_max_encodes() -> int:
    """Physical core count, at least 1"""
    return max(1, psutil.cpu_count(logical=False) or psutil.cpu_count() or 1)


@dataclass
class PipelineConfig:
    """Typed configuration for one pipeline run.

    Attributes:
        resolution_ladder: Ladder the selector filters
        segment_duration_seconds: Target segment length for the packager and
            keyframe interval for the encoder
        encryption_enabled: Package into lock/ with a raw key instead of free/
        max_concurrent_encodes: Upper bound on simultaneous encode subprocesses
        subprocess_timeout_ms: Per-subprocess timeout; None disables it
    """
    resolution_ladder: Tuple[ResolutionProfile, ...] = RESOLUTION_PROFILES
    segment_duration_seconds: int = SEGMENT_DURATION
    encryption_enabled: bool = True
    max_concurrent_encodes: int = field(default_factory=default_max_encodes)
    subprocess_timeout_ms: Optional[int] = None
    ffmpeg_bin: str = FFMPEG_BIN
    ffprobe_bin: str = FFPROBE_BIN
    packager_bin: str = PACKAGER_BIN
    encoder_threads: int = ENCODER_THREADS
    audio_bitrate: str = AUDIO_BITRATE
    memory_reserve: float = MEMORY_RESERVE
    log_dir: Path = LOG_DIR

    def __post_init__(self) -> None:
        if isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir)
        self.resolution_ladder = tuple(
            sorted(self.resolution_ladder, key=lambda p: p.width)
        )

    @property
    def subprocess_timeout(self) -> Optional[float]:
        """Timeout in seconds as expected by subprocess"""
        if self.subprocess_timeout_ms is None:
            return None
        return self.subprocess_timeout_ms / 1000.0

    @classmethod
    def from_environment(cls, **overrides) -> "PipelineConfig":
        """Create a config from environment variables and explicit overrides.

        Overrides whose value is None are ignored so CLI options that were
        not given fall through to the environment.
        """
        values = {
            "segment_duration_seconds": _env_int("VODPACK_SEGMENT_DURATION", SEGMENT_DURATION),
            "encryption_enabled": _env_bool("VODPACK_ENCRYPT", True),
            "subprocess_timeout_ms": _env_int("VODPACK_TIMEOUT_MS", None),
        }
        max_encodes = _env_int("VODPACK_MAX_ENCODES", None)
        if max_encodes is not None:
            values["max_concurrent_encodes"] = max_encodes
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        """Validate all configuration settings."""
        if not self.resolution_ladder:
            raise ConfigurationError("Resolution ladder must not be empty", module="config")
        names = [p.name for p in self.resolution_ladder]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate resolution names in ladder: {names}",
                                     module="config")
        for profile in self.resolution_ladder:
            if profile.width <= 0 or profile.height <= 0:
                raise ConfigurationError(f"Invalid geometry for {profile.name}", module="config")
        if self.segment_duration_seconds <= 0:
            raise ConfigurationError(
                f"Segment duration must be positive: {self.segment_duration_seconds}",
                module="config"
            )
        if self.max_concurrent_encodes < 1:
            raise ConfigurationError(
                f"Max concurrent encodes must be at least 1: {self.max_concurrent_encodes}",
                module="config"
            )
        if self.subprocess_timeout_ms is not None and self.subprocess_timeout_ms <= 0:
            raise ConfigurationError(
                f"Subprocess timeout must be positive: {self.subprocess_timeout_ms}",
                module="config"
            )
        if self.encoder_threads < 0:
            raise ConfigurationError(f"Encoder threads must be non-negative: {self.encoder_threads}",
                                     module="config")
        if not 0.0 <= self.memory_reserve < 1.0:
            raise ConfigurationError(f"Memory reserve must be in [0, 1): {self.memory_reserve}",
                                     module="config")
