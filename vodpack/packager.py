"""Packaging of encoded intermediates into DASH and HLS

Responsibilities:
- Build one stream descriptor per video rendition, audio track and caption
- Append raw-key encryption flags when a ClearKey is given
- Run Shaka Packager once and surface failures as PackagingError
- Make sure a failed run never leaves a manifest behind
"""

import logging
import re
from collections import Counter
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .command_jobs import PackageJob
from .config import SEGMENT_DURATION, PipelineConfig
from .exceptions import PackagingError
from .models import AudioTrack, ClearKey, SubtitleTrack
from .resolution import ResolutionProfile
from .utils import CancellationToken
from .video.encoding import rendition_output_path

logger = logging.getLogger(__name__)

MPD_FILENAME = "manifest.mpd"
HLS_MASTER_FILENAME = "master.m3u8"
INIT_SEGMENT = "init.mp4"
MEDIA_SEGMENT_TEMPLATE = "seg_$Number$.m4s"
TEXT_SEGMENT_TEMPLATE = "sub_$Number$.vtt"
PLAYLIST_NAME = "playlist.m3u8"

_LANGUAGE_TAG = re.compile(r"^[a-z]{2,3}$", re.IGNORECASE)


def packager_language(lang: str) -> str:
    """Language tag the packager accepts; anything else becomes 'und'"""
    if lang and _LANGUAGE_TAG.match(lang):
        return lang.lower()
    return "und"


def hls_name(name: str) -> str:
    """Uppercase display name safe inside a stream descriptor"""
    return re.sub(r"\s+", "_", name.strip().upper()).replace(",", "").replace("=", "")


def _posix(path: Path) -> str:
    return Path(path).as_posix()


def _descriptor(*fields: Tuple[str, object]) -> str:
    return ",".join(f"{key}={value}" for key, value in fields)


def build_video_descriptor(input_file: Path, profile: ResolutionProfile, output_dir: Path) -> str:
    rendition_dir = output_dir / profile.name
    return _descriptor(
        ("input", _posix(input_file)),
        ("stream", "video"),
        ("init_segment", _posix(rendition_dir / INIT_SEGMENT)),
        ("segment_template", _posix(rendition_dir / MEDIA_SEGMENT_TEMPLATE)),
        ("playlist_name", _posix(rendition_dir / PLAYLIST_NAME)),
        ("hls_group_id", "video"),
        ("hls_name", hls_name(profile.name)),
    )


def build_audio_descriptor(track: AudioTrack, output_dir: Path) -> str:
    track_dir = output_dir / "audio" / track.output_name
    return _descriptor(
        ("input", _posix(track.path)),
        ("stream", "audio"),
        ("language", packager_language(track.lang)),
        ("init_segment", _posix(track_dir / INIT_SEGMENT)),
        ("segment_template", _posix(track_dir / MEDIA_SEGMENT_TEMPLATE)),
        ("playlist_name", _posix(track_dir / PLAYLIST_NAME)),
        ("hls_group_id", "audio"),
        ("hls_name", hls_name(track.name)),
    )


def build_text_descriptor(track: SubtitleTrack, output_dir: Path, dir_name: Optional[str] = None) -> str:
    track_dir = output_dir / "subtitles" / (dir_name or track.lang)
    return _descriptor(
        ("input", _posix(track.path)),
        ("stream", "text"),
        ("language", packager_language(track.lang)),
        ("format", "webvtt"),
        ("segment_template", _posix(track_dir / TEXT_SEGMENT_TEMPLATE)),
        ("playlist_name", _posix(track_dir / PLAYLIST_NAME)),
        ("hls_group_id", "subtitles"),
        ("hls_name", hls_name(track.name)),
    )


def subtitle_dir_names(subtitle_tracks: Sequence[SubtitleTrack]) -> List[str]:
    """Output directory per caption: its language, or the file stem on collisions"""
    counts = Counter(track.lang for track in subtitle_tracks)
    return [
        track.lang if counts[track.lang] == 1 else Path(track.path).stem.lower()
        for track in subtitle_tracks
    ]


def build_stream_descriptors(
    output_dir: Path,
    video_inputs: Sequence[Tuple[ResolutionProfile, Path]],
    audio_tracks: Sequence[AudioTrack],
    subtitle_tracks: Sequence[SubtitleTrack],
) -> List[str]:
    """One descriptor per rendition, audio track and caption, in that order"""
    output_dir = Path(output_dir)
    descriptors = [
        build_video_descriptor(input_file, profile, output_dir)
        for profile, input_file in video_inputs
    ]
    descriptors.extend(build_audio_descriptor(track, output_dir) for track in audio_tracks)
    descriptors.extend(
        build_text_descriptor(track, output_dir, dir_name)
        for track, dir_name in zip(subtitle_tracks, subtitle_dir_names(subtitle_tracks))
    )
    return descriptors


def build_packager_command(
    descriptors: Sequence[str],
    output_dir: Path,
    segment_duration: int = SEGMENT_DURATION,
    clear_key: Optional[ClearKey] = None,
    default_language: Optional[str] = None,
    packager_bin: str = "packager",
) -> List[str]:
    """Build the packager command: descriptors first, then global flags"""
    output_dir = Path(output_dir)
    cmd = [packager_bin, *descriptors]

    if clear_key is not None:
        # One label-less key shared by every stream
        cmd.extend([
            "--enable_raw_key_encryption",
            "--keys", f"label=:key_id={clear_key.key_id}:key={clear_key.key}",
        ])

    cmd.extend([
        "--mpd_output", _posix(output_dir / MPD_FILENAME),
        "--hls_master_playlist_output", _posix(output_dir / HLS_MASTER_FILENAME),
        "--generate_static_live_mpd",
        "--segment_duration", str(segment_duration),
        "--hls_playlist_type", "vod",
    ])
    if default_language:
        cmd.extend(["--default_language", default_language])
    return cmd


def _default_audio_language(audio_tracks: Sequence[AudioTrack]) -> Optional[str]:
    default = next((t for t in audio_tracks if t.is_default), None)
    if default is None:
        return None
    lang = packager_language(default.lang)
    return None if lang == "und" else lang


def remove_manifests(output_dir: Path) -> None:
    """Delete any manifest a failed packager run left in output_dir"""
    for name in (MPD_FILENAME, HLS_MASTER_FILENAME):
        manifest = Path(output_dir) / name
        if manifest.exists():
            logger.warning("Removing partial manifest %s", manifest)
            manifest.unlink()


def package_all(
    output_dir: Path,
    temp_dir: Path,
    resolutions: Sequence[ResolutionProfile],
    audio_tracks: Sequence[AudioTrack],
    subtitle_tracks: Sequence[SubtitleTrack],
    clear_key: Optional[ClearKey] = None,
    config: Optional[PipelineConfig] = None,
    token: Optional[CancellationToken] = None,
) -> Tuple[Path, Path]:
    """
    Package all intermediates of a job into output_dir.

    Args:
        output_dir: Output tree root (lock/ or free/ of the job)
        temp_dir: Job temp directory holding the rendition intermediates
        resolutions: Renditions that were encoded
        audio_tracks: Encoded audio tracks
        subtitle_tracks: WebVTT caption tracks
        clear_key: Key to encrypt every stream with, or None for clear output
        config: Pipeline configuration
        token: Job cancellation token

    Returns:
        (manifest.mpd path, master.m3u8 path)

    Raises:
        PackagingError: If an input is missing or the packager fails
    """
    config = config or PipelineConfig()
    output_dir = Path(output_dir)
    video_inputs = [(profile, rendition_output_path(temp_dir, profile)) for profile in resolutions]

    inputs = [path for _, path in video_inputs]
    inputs.extend(track.path for track in audio_tracks)
    inputs.extend(track.path for track in subtitle_tracks)
    missing = [str(path) for path in inputs if not Path(path).is_file()]
    if missing:
        raise PackagingError(f"Missing packager input(s): {', '.join(missing)}")

    output_dir.mkdir(parents=True, exist_ok=True)
    for profile in resolutions:
        (output_dir / profile.name).mkdir(parents=True, exist_ok=True)
    for track in audio_tracks:
        (output_dir / "audio" / track.output_name).mkdir(parents=True, exist_ok=True)
    for dir_name in subtitle_dir_names(subtitle_tracks):
        (output_dir / "subtitles" / dir_name).mkdir(parents=True, exist_ok=True)

    descriptors = build_stream_descriptors(output_dir, video_inputs, audio_tracks, subtitle_tracks)
    cmd = build_packager_command(
        descriptors, output_dir,
        segment_duration=config.segment_duration_seconds,
        clear_key=clear_key,
        default_language=_default_audio_language(audio_tracks),
        packager_bin=config.packager_bin,
    )
    logger.info("Packaging %d video, %d audio and %d text stream(s)%s",
                len(video_inputs), len(audio_tracks), len(subtitle_tracks),
                " with raw-key encryption" if clear_key else "")

    try:
        PackageJob(cmd).execute(timeout=config.subprocess_timeout, token=token)
    except Exception:
        remove_manifests(output_dir)
        raise

    mpd_path = output_dir / MPD_FILENAME
    hls_path = output_dir / HLS_MASTER_FILENAME
    missing_manifests = [p.name for p in (mpd_path, hls_path) if not p.is_file()]
    if missing_manifests:
        remove_manifests(output_dir)
        raise PackagingError(f"Packager exited cleanly but did not write {', '.join(missing_manifests)}")

    logger.info("Packaging completed: %s, %s", mpd_path, hls_path)
    return mpd_path, hls_path
