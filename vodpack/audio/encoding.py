"""Audio encoding functions for vodpack"""

import functools
import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional, Sequence

from ..command_jobs import AudioEncodeJob
from ..config import PipelineConfig
from ..exceptions import EncodeError
from ..languages import language_name
from ..models import UNKNOWN_LANGUAGE, AudioStream, AudioTrack
from ..scheduler import EncodeScheduler
from ..utils import CancellationToken
from ..video.command_builders import build_audio_encode_command

logger = logging.getLogger(__name__)


def audio_track_name(stream: AudioStream, position: int) -> str:
    """Menu label for an audio track"""
    if stream.language is None:
        return f"Audio Track {position + 1}"
    return language_name(stream.language) or f"{stream.language.upper()} Audio"


def plan_audio_tracks(streams: Sequence[AudioStream], audio_dir: Path) -> List[AudioTrack]:
    """
    Describe the intermediate track each source audio stream will become.

    The first track is the default. Tracks sharing a language get the
    stream index appended to their output directory name.
    """
    languages = [stream.language or UNKNOWN_LANGUAGE for stream in streams]
    counts = Counter(languages)
    tracks = []
    for position, (stream, lang) in enumerate(zip(streams, languages)):
        tracks.append(AudioTrack(
            path=Path(audio_dir) / f"audio_{stream.index}_{lang}.mp4",
            lang=lang,
            name=audio_track_name(stream, position),
            is_default=position == 0,
            index=stream.index,
            output_name=lang if counts[lang] == 1 else f"{lang}_{stream.index}",
        ))
    return tracks


def encode_audio(input_path: Path, stream_index: int, language: Optional[str],
                 output_path: Path, config: PipelineConfig,
                 token: Optional[CancellationToken] = None) -> Path:
    """
    Encode a single audio stream to AAC

    Returns:
        Path: Path to encoded audio file

    Raises:
        EncodeError: If encoding fails
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_audio_encode_command(
        input_path, output_path, stream_index, language,
        bitrate=config.audio_bitrate, ffmpeg_bin=config.ffmpeg_bin,
    )
    AudioEncodeJob(cmd, stream_index).execute(timeout=config.subprocess_timeout, token=token)

    if not output_path.is_file() or output_path.stat().st_size == 0:
        raise EncodeError(f"ffmpeg produced no output at {output_path}",
                          target=f"audio:{stream_index}", module="audio_encoding")
    logger.info("Encoded audio stream %d (%s)", stream_index, language or UNKNOWN_LANGUAGE)
    return output_path


def build_audio_tasks(input_path: Path, streams: Sequence[AudioStream],
                      tracks: Sequence[AudioTrack], config: PipelineConfig) -> List[tuple]:
    """Scheduler tasks for every planned audio track, in stream order"""
    if not streams:
        logger.warning("No audio tracks found")
    return [
        (
            f"audio:{stream.index}",
            functools.partial(encode_audio, input_path, stream.index, stream.language,
                              track.path, config),
        )
        for stream, track in zip(streams, tracks)
    ]


def encode_audio_tracks(input_path: Path, streams: Sequence[AudioStream], audio_dir: Path,
                        config: PipelineConfig,
                        token: Optional[CancellationToken] = None) -> List[AudioTrack]:
    """Encode every audio stream under the concurrency cap, returning tracks in stream order"""
    tracks = plan_audio_tracks(streams, audio_dir)
    scheduler = EncodeScheduler(config.max_concurrent_encodes, token=token,
                                memory_reserve=config.memory_reserve)
    scheduler.run_all(build_audio_tasks(input_path, streams, tracks, config))
    return tracks
