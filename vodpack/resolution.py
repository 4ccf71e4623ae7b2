"""Resolution ladder and rendition selection"""

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

from .exceptions import NoApplicableResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionProfile:
    """One rung of the encoding ladder.

    Attributes:
        name: Rendition name, also used as its directory name
        width: Nominal frame width; the rung applies to sources at least this wide
        height: Target frame height for the scale filter
        bitrate: Target video bitrate in ffmpeg notation (e.g. "2500k")
    """
    name: str
    width: int
    height: int
    bitrate: str

    @property
    def bitrate_kbps(self) -> int:
        value = self.bitrate.lower()
        if value.endswith("k"):
            return int(value[:-1])
        if value.endswith("m"):
            return int(float(value[:-1]) * 1000)
        return int(value) // 1000


# Ordered ascending by width
RESOLUTION_PROFILES: Tuple[ResolutionProfile, ...] = (
    ResolutionProfile("240p", 426, 240, "500k"),
    ResolutionProfile("360p", 640, 360, "800k"),
    ResolutionProfile("480p", 854, 480, "1200k"),
    ResolutionProfile("720p", 1280, 720, "2500k"),
    ResolutionProfile("1080p", 1920, 1080, "5000k"),
    ResolutionProfile("2K", 2560, 1440, "15000k"),
    ResolutionProfile("4K", 3840, 2160, "40000k"),
)


def select_resolutions(
    width: int,
    ladder: Sequence[ResolutionProfile] = RESOLUTION_PROFILES
) -> Tuple[ResolutionProfile, ...]:
    """
    Select every ladder rung the source is wide enough for.

    Args:
        width: Source frame width in pixels
        ladder: Resolution ladder to filter

    Returns:
        Non-empty tuple of profiles sorted ascending by width

    Raises:
        NoApplicableResolutionError: If the source is narrower than every rung
    """
    selected = tuple(sorted(
        (profile for profile in ladder if width >= profile.width),
        key=lambda profile: profile.width
    ))
    if not selected:
        raise NoApplicableResolutionError(width)
    logger.debug("Selected renditions for width %d: %s",
                 width, ", ".join(p.name for p in selected))
    return selected
