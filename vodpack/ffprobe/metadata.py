"""Source metadata extraction

Responsibilities:
- Run ffprobe once per source through run_cmd, killable by timeout or
  cancellation
- Pick the first video stream for geometry and duration
- Collect every audio stream with its language tag
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..command_jobs import ProbeJob
from ..exceptions import ProbeError
from ..models import AudioStream, SourceMetadata
from ..utils import CancellationToken

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _language_tag(stream: Dict[str, Any]) -> Optional[str]:
    tags = stream.get("tags") or {}
    language = tags.get("language") or tags.get("LANGUAGE")
    if not language:
        return None
    language = language.strip().lower()
    if not language or language == "und":
        return None
    return language


def parse_probe_data(data: Dict[str, Any], source: str = "<input>") -> SourceMetadata:
    """
    Reduce ffprobe's -show_format -show_streams JSON to SourceMetadata.

    Raises:
        ProbeError: If there is no video stream or its geometry is unusable
    """
    streams = data.get("streams", [])
    video_stream = next(
        (s for s in streams
         if s.get("codec_type") == "video"
         and not (s.get("disposition") or {}).get("attached_pic")),
        None
    )
    if video_stream is None:
        raise ProbeError(f"No video stream found in {source}")

    width = _to_int(video_stream.get("width"))
    height = _to_int(video_stream.get("height"))
    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid video geometry {width}x{height} in {source}")

    duration = _to_float(video_stream.get("duration"))
    if duration is None:
        duration = _to_float((data.get("format") or {}).get("duration"))
        if duration is not None:
            logger.debug("Using container duration for %s", source)
    if duration is None:
        logger.warning("No duration reported for %s", source)
        duration = 0.0

    audio_streams = tuple(
        AudioStream(
            index=position,
            language=_language_tag(stream),
            codec=stream.get("codec_name", "unknown"),
            channels=_to_int(stream.get("channels")),
            sample_rate=_to_int(stream.get("sample_rate")),
        )
        for position, stream in enumerate(
            s for s in streams if s.get("codec_type") == "audio"
        )
    )

    return SourceMetadata(
        width=width,
        height=height,
        duration=duration,
        audio_streams=audio_streams,
    )


def build_probe_command(input_path: Path, ffprobe_bin: str = "ffprobe") -> List[str]:
    """ffprobe command printing format and streams as JSON"""
    return [
        ffprobe_bin, "-v", "error",
        "-show_format", "-show_streams",
        "-of", "json",
        str(input_path),
    ]


def probe(input_path: Path, timeout: Optional[float] = None,
          ffprobe_bin: str = "ffprobe",
          token: Optional[CancellationToken] = None) -> SourceMetadata:
    """
    Inspect a source file.

    Args:
        input_path: Source media file
        timeout: Seconds to wait for ffprobe before killing it
        ffprobe_bin: ffprobe executable
        token: Job cancellation token; cancelling kills ffprobe

    Returns:
        SourceMetadata for the file

    Raises:
        ProbeError: If the file is missing, ffprobe fails or times out, or
            the file has no usable video stream
        JobCancelledError: If the token is cancelled
    """
    input_path = Path(input_path)
    if not input_path.is_file():
        raise ProbeError(f"Input file not found: {input_path}")

    logger.info("Probing %s", input_path)
    job = ProbeJob(build_probe_command(input_path, ffprobe_bin))
    result = job.execute(timeout=timeout, token=token)
    try:
        data = json.loads(result.stdout)
    except ValueError as e:
        raise ProbeError(f"ffprobe returned invalid JSON for {input_path}: {e}",
                         stderr=result.stderr or "") from e

    metadata = parse_probe_data(data, str(input_path))
    logger.info(
        "Source: %dx%d, %.2fs, %d audio stream(s)",
        metadata.width, metadata.height, metadata.duration, len(metadata.audio_streams)
    )
    return metadata
