"""Data types passed between pipeline stages"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

UNKNOWN_LANGUAGE = "unknown"


@dataclass(frozen=True)
class AudioStream:
    """One audio stream of the source as reported by ffprobe.

    Attributes:
        index: Position among the source's audio streams (the N in -map 0:a:N)
        language: Lowercased language tag, None when absent or "und"
        codec: Codec name
        channels: Channel count
        sample_rate: Sample rate in Hz
    """
    index: int
    language: Optional[str]
    codec: str
    channels: int
    sample_rate: int


@dataclass(frozen=True)
class SourceMetadata:
    """Container and stream properties of a source file"""
    width: int
    height: int
    duration: float
    audio_streams: Tuple[AudioStream, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AudioTrack:
    """An encoded single-track audio intermediate ready for packaging"""
    path: Path
    lang: str
    name: str
    is_default: bool = False
    index: int = 0
    output_name: str = ""

    def __post_init__(self) -> None:
        if not self.output_name:
            object.__setattr__(self, "output_name", self.lang)


@dataclass(frozen=True)
class SubtitleTrack:
    """A WebVTT caption file ready for packaging"""
    path: Path
    lang: str
    name: str


@dataclass(frozen=True)
class ClearKey:
    """Raw content key and key id, both 32 lowercase hex characters"""
    key_id: str
    key: str

    def to_dict(self) -> dict:
        return {"key_id": self.key_id, "key": self.key}
