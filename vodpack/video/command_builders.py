"""Helper functions for building ffmpeg commands"""

import logging
from pathlib import Path
from typing import List, Optional

from ..config import (
    AUDIO_BITRATE, AUDIO_CODEC, ENCODER_THREADS, PIX_FMT, SEGMENT_DURATION,
    VIDEO_CODEC, VIDEO_CRF, VIDEO_PRESET, VIDEO_PROFILE
)
from ..resolution import ResolutionProfile

log = logging.getLogger(__name__)


def build_scale_filter(height: int) -> str:
    """Scale to height, width follows the aspect ratio rounded to an even number"""
    return f"scale=-2:{height}"


def build_keyframe_expr(segment_duration: int) -> str:
    """Force a keyframe on every segment boundary"""
    return f"expr:gte(t,n_forced*{segment_duration})"


def build_video_encode_command(
    input_file: Path,
    output_file: Path,
    profile: ResolutionProfile,
    segment_duration: int = SEGMENT_DURATION,
    threads: int = ENCODER_THREADS,
    ffmpeg_bin: str = "ffmpeg",
) -> List[str]:
    """Build ffmpeg command for one video-only rendition"""
    maxrate_kbps = profile.bitrate_kbps
    cmd = [
        ffmpeg_bin, "-hide_banner", "-loglevel", "warning", "-y",
        "-i", str(input_file),
        "-map", "0:v:0",
        "-an", "-sn", "-dn",
        "-c:v", VIDEO_CODEC,
        "-preset", VIDEO_PRESET,
        "-profile:v", VIDEO_PROFILE,
        "-crf", str(VIDEO_CRF),
        "-maxrate", profile.bitrate,
        "-bufsize", f"{maxrate_kbps * 2}k",
        "-vf", build_scale_filter(profile.height),
        "-pix_fmt", PIX_FMT,
        "-force_key_frames", build_keyframe_expr(segment_duration),
    ]
    if threads:
        cmd.extend(["-threads", str(threads)])
    cmd.extend(["-movflags", "+faststart", str(output_file)])
    return cmd


def build_audio_encode_command(
    input_file: Path,
    output_file: Path,
    stream_index: int,
    language: Optional[str] = None,
    bitrate: str = AUDIO_BITRATE,
    ffmpeg_bin: str = "ffmpeg",
) -> List[str]:
    """Build ffmpeg command for extracting one audio stream to AAC"""
    cmd = [
        ffmpeg_bin, "-hide_banner", "-loglevel", "warning", "-y",
        "-i", str(input_file),
        "-map", f"0:a:{stream_index}",
        "-vn", "-sn", "-dn",
        "-c:a", AUDIO_CODEC,
        "-b:a", bitrate,
    ]
    if language:
        cmd.extend(["-metadata:s:a:0", f"language={language}"])
    cmd.extend(["-movflags", "+faststart", str(output_file)])
    return cmd
