"""Video rendition encoding

Each selected ladder rung becomes one video-only intermediate MP4 under
the job's temp directory; the renditions are encoded as independent tasks
on the job's EncodeScheduler.
"""

import functools
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

from ..command_jobs import VideoEncodeJob
from ..config import PipelineConfig
from ..exceptions import EncodeError
from ..resolution import ResolutionProfile
from ..scheduler import EncodeScheduler
from ..utils import CancellationToken, format_size, get_file_size
from .command_builders import build_video_encode_command

logger = logging.getLogger(__name__)


def rendition_output_path(temp_dir: Path, profile: ResolutionProfile) -> Path:
    """Intermediate file of a rendition: {temp}/{name}/video_{name}.mp4"""
    return Path(temp_dir) / profile.name / f"video_{profile.name}.mp4"


def encode_video(input_path: Path, profile: ResolutionProfile, output_path: Path,
                 config: PipelineConfig,
                 token: Optional[CancellationToken] = None) -> Path:
    """
    Encode one rendition of the source.

    Returns:
        Path to the encoded intermediate

    Raises:
        EncodeError: If ffmpeg fails, times out or writes nothing
        JobCancelledError: If the token is cancelled
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_video_encode_command(
        input_path, output_path, profile,
        segment_duration=config.segment_duration_seconds,
        threads=config.encoder_threads,
        ffmpeg_bin=config.ffmpeg_bin,
    )

    start_time = time.time()
    VideoEncodeJob(cmd, profile.name).execute(timeout=config.subprocess_timeout, token=token)

    if not output_path.is_file() or output_path.stat().st_size == 0:
        raise EncodeError(f"ffmpeg produced no output at {output_path}", target=profile.name)
    logger.info("Encoded %s (%s, %s) in %.1fs",
                profile.name, profile.bitrate, format_size(get_file_size(output_path)),
                time.time() - start_time)
    return output_path


def build_rendition_tasks(input_path: Path, resolutions: Sequence[ResolutionProfile],
                          temp_dir: Path, config: PipelineConfig) -> List[tuple]:
    """Scheduler tasks for every rendition, in ladder order"""
    return [
        (
            profile.name,
            functools.partial(
                encode_video, input_path, profile,
                rendition_output_path(temp_dir, profile), config
            ),
        )
        for profile in resolutions
    ]


def encode_renditions(input_path: Path, resolutions: Sequence[ResolutionProfile],
                      temp_dir: Path, config: PipelineConfig,
                      token: Optional[CancellationToken] = None) -> List[Path]:
    """Encode every rendition under the concurrency cap, returning paths in ladder order"""
    scheduler = EncodeScheduler(config.max_concurrent_encodes, token=token,
                                memory_reserve=config.memory_reserve)
    return scheduler.run_all(build_rendition_tasks(input_path, resolutions, temp_dir, config))
