"""Subtitle discovery and SRT to WebVTT normalization

Responsibilities:
- Convert every .srt without a .vtt sibling into WebVTT next to it
- Leave files that already have a .vtt sibling untouched
- Describe each .vtt as a SubtitleTrack with language and display name

Captions are non-essential, so a malformed file is logged and skipped
instead of failing the job.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from .exceptions import SubtitleConversionError
from .languages import display_name
from .models import SubtitleTrack

logger = logging.getLogger(__name__)

WEBVTT_HEADER = "WEBVTT\n\n"

# 00:00:01,000 --> 00:00:04,000 (hours optional, "." or "," as separator)
_CUE_TIMING = re.compile(
    r"^\s*((?:\d+:)?\d{1,2}:\d{2}[,.]\d{1,3})\s*-->\s*((?:\d+:)?\d{1,2}:\d{2}[,.]\d{1,3})(.*)$"
)


def srt_to_vtt(content: str, source: str = "<input>") -> str:
    """
    Convert SRT text to WebVTT text.

    Strips a byte order mark, normalizes line endings, rewrites the
    millisecond separator in cue timings and prepends the WEBVTT header.

    Raises:
        SubtitleConversionError: If no cue timing line is found
    """
    content = content.lstrip("\ufeff")
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    converted = []
    cues = 0
    for line in lines:
        match = _CUE_TIMING.match(line)
        if match:
            start, end, settings = match.groups()
            converted.append(f"{start.replace(',', '.')} --> {end.replace(',', '.')}{settings}")
            cues += 1
        else:
            converted.append(line)

    if cues == 0:
        raise SubtitleConversionError(f"{source}: no cue timings found")
    return WEBVTT_HEADER + "\n".join(converted)


def convert_srt_file(srt_path: Path) -> Path:
    """
    Write the WebVTT version of an .srt file next to it.

    Returns:
        Path to the written .vtt file

    Raises:
        SubtitleConversionError: If the file cannot be read or is malformed
    """
    vtt_path = srt_path.with_suffix(".vtt")
    try:
        content = srt_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SubtitleConversionError(f"{srt_path.name} is not valid UTF-8") from e
    except OSError as e:
        raise SubtitleConversionError(f"Could not read {srt_path.name}: {e}") from e

    vtt_content = srt_to_vtt(content, srt_path.name)

    vtt_path.write_text(vtt_content, encoding="utf-8")
    logger.info("Converted %s -> %s", srt_path.name, vtt_path.name)
    return vtt_path


def subtitle_language(path: Path) -> str:
    """Language code from the first dot-delimited segment of the file name"""
    return path.name.split(".")[0].lower()


def find_subtitles(directory: Optional[Path]) -> List[SubtitleTrack]:
    """
    Normalize and list the caption tracks in a directory.

    Args:
        directory: Directory holding {lang}.srt / {lang}.vtt files; may be
            None or missing, which means no subtitles

    Returns:
        SubtitleTrack per .vtt file, sorted by file name
    """
    if directory is None or not Path(directory).is_dir():
        logger.info("No subtitle directory at %s", directory)
        return []
    directory = Path(directory)

    for srt_path in sorted(directory.iterdir()):
        if not srt_path.is_file() or srt_path.suffix.lower() != ".srt":
            continue
        if srt_path.with_suffix(".vtt").exists():
            logger.debug("Skipping %s, already converted", srt_path.name)
            continue
        try:
            convert_srt_file(srt_path)
        except SubtitleConversionError as e:
            logger.warning("Skipping subtitle track: %s", e)

    tracks = []
    for vtt_path in sorted(directory.iterdir()):
        if not vtt_path.is_file() or vtt_path.suffix.lower() != ".vtt":
            continue
        lang = subtitle_language(vtt_path)
        tracks.append(SubtitleTrack(path=vtt_path, lang=lang, name=display_name(lang)))

    logger.info("Found %d subtitle track(s) in %s", len(tracks), directory)
    return tracks
