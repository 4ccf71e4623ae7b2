"""High-level job orchestration for VOD packaging

Responsibilities:
  - Lay out the per-job working and output trees.
  - Drive a job through probing, encoding and packaging, recording every
    state transition.
  - Turn stage failures and cancellation into terminal job states.
  - Publish a package only once it is complete, replacing any earlier
    package of the same job key.
  - Run several jobs concurrently and cancel them by key.
  - Present a final summary of each job.
"""

import logging
import os
import re
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .audio.encoding import build_audio_tasks, plan_audio_tracks
from .clearkey import CLEARKEY_FILENAME, generate_clear_key, write_clear_key
from .config import WORKING_ROOT, PipelineConfig
from .exceptions import JobCancelledError, JobStateError, ProbeError, VodpackError
from .ffprobe.metadata import probe
from .formatting import (
    print_check, print_error, print_header, print_job_state,
    print_separator, print_summary_row, print_tool_output, print_warning
)
from .models import AudioTrack, ClearKey, SourceMetadata, SubtitleTrack
from .packager import HLS_MASTER_FILENAME, MPD_FILENAME, package_all
from .resolution import ResolutionProfile, select_resolutions
from .scheduler import EncodeScheduler
from .subtitles import find_subtitles
from .utils import CancellationToken, format_size, get_timestamp, get_tree_size
from .video.encoding import build_rendition_tasks

logger = logging.getLogger(__name__)

VIDEO_SUFFIXES = (".mkv", ".mp4", ".mov", ".m4v", ".webm", ".avi", ".ts")


class JobState(Enum):
    CREATED = "created"
    PROBING = "probing"
    ENCODING = "encoding"
    PACKAGING = "packaging"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

_TRANSITIONS = {
    JobState.CREATED: {JobState.PROBING, JobState.FAILED, JobState.CANCELLED},
    JobState.PROBING: {JobState.ENCODING, JobState.FAILED, JobState.CANCELLED},
    JobState.ENCODING: {JobState.PACKAGING, JobState.FAILED, JobState.CANCELLED},
    JobState.PACKAGING: {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED},
}


@dataclass
class JobResult:
    """Artifacts of a completed job"""
    output_dir: Path
    manifest_path: Path
    hls_master_path: Path
    clear_key_path: Optional[Path]
    resolutions: Tuple[ResolutionProfile, ...]
    audio_tracks: List[AudioTrack] = field(default_factory=list)
    subtitle_tracks: List[SubtitleTrack] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def encrypted(self) -> bool:
        return self.clear_key_path is not None


def resolve_source(source: Path) -> Tuple[Path, Optional[Path]]:
    """
    Find the input file and subtitle directory of a source.

    A file is its own input. A project directory provides ``input.*`` (or
    else its first video file by name) and an optional ``subtitles/``.

    Raises:
        ProbeError: If the source does not exist or holds no video file
    """
    source = Path(source)
    if source.is_file():
        return source, None
    if not source.is_dir():
        raise ProbeError(f"Input not found: {source}")

    candidates = sorted(
        p for p in source.iterdir()
        if p.is_file() and p.suffix.lower() in VIDEO_SUFFIXES
    )
    named = [p for p in candidates if p.stem == "input"]
    if not candidates:
        raise ProbeError(f"No video file found in project directory {source}")
    subtitle_dir = source / "subtitles"
    return (named or candidates)[0], subtitle_dir if subtitle_dir.is_dir() else None


class TranscodeJob:
    """
    One source turned into one DASH/HLS package.

    A job runs once. Its state only moves forward along
    CREATED -> PROBING -> ENCODING -> PACKAGING -> COMPLETED, or ends in
    FAILED (with ``failed_stage`` set) or CANCELLED.

    Attributes:
        job_key: Name of the job's working and output directories
        temp_dir: Intermediates, ``{work}/{key}/temp``
        output_dir: ``{output_root}/{key}`` holding ``lock/`` or ``free/``
        history: (state, timestamp) for every transition
    """

    def __init__(self, source: Path, output_root: Path, job_key: Optional[str] = None,
                 subtitle_dir: Optional[Path] = None,
                 config: Optional[PipelineConfig] = None,
                 work_root: Optional[Path] = None):
        self.source = Path(source)
        self.config = config or PipelineConfig()
        self.job_key = job_key or (self.source.name if self.source.is_dir() else self.source.stem)
        if not self.job_key or "/" in self.job_key or self.job_key in (".", ".."):
            raise JobStateError(f"Invalid job key: {self.job_key!r}", module="pipeline")

        self.work_dir = Path(work_root or WORKING_ROOT) / self.job_key
        self.temp_dir = self.work_dir / "temp"
        self.audio_dir = self.temp_dir / "audio"
        self.subtitle_dir = Path(subtitle_dir) if subtitle_dir else None
        self.output_dir = Path(output_root) / self.job_key
        self.lock_dir = self.output_dir / "lock"
        self.free_dir = self.output_dir / "free"

        self.state = JobState.CREATED
        self.failed_stage: Optional[JobState] = None
        self.error: Optional[BaseException] = None
        self.stderr = ""
        self.history: List[Tuple[JobState, datetime]] = [(JobState.CREATED, datetime.now())]

        self.input_path: Optional[Path] = None
        self.metadata: Optional[SourceMetadata] = None
        self.resolutions: Tuple[ResolutionProfile, ...] = ()
        self.audio_tracks: List[AudioTrack] = []
        self.subtitle_tracks: List[SubtitleTrack] = []
        self.clear_key: Optional[ClearKey] = None
        self.result: Optional[JobResult] = None

        self.token = CancellationToken()
        self._lock = threading.Lock()
        self._started = False

    @property
    def package_dir(self) -> Path:
        """The output sub-root this job writes: lock/ when encrypting, free/ otherwise"""
        return self.lock_dir if self.config.encryption_enabled else self.free_dir

    @property
    def staging_dir(self) -> Path:
        """Where the package is assembled before it replaces package_dir"""
        return self.output_dir / f".{self.package_dir.name}.staging"

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: JobState) -> None:
        with self._lock:
            if state not in _TRANSITIONS.get(self.state, ()):
                raise JobStateError(
                    f"Invalid transition {self.state.value} -> {state.value}", module="pipeline"
                )
            self.state = state
            self.history.append((state, datetime.now()))
        logger.info("Job %s: %s", self.job_key, state.value)

    def cancel(self) -> None:
        """Kill every running subprocess of the job and stop it at the next step"""
        if self.done:
            return
        logger.warning("Cancelling job %s", self.job_key)
        self.token.cancel()

    def _prepare_layout(self) -> None:
        if self.subtitle_dir is None:
            project_subtitles = self.source / "subtitles"
            if self.source.is_dir() and project_subtitles.is_dir():
                self.subtitle_dir = project_subtitles
            else:
                self.subtitle_dir = self.work_dir / "subtitles"
        for directory in (self.temp_dir, self.audio_dir, self.subtitle_dir, self.package_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _probe(self) -> None:
        self.input_path, _ = resolve_source(self.source)
        self.metadata = probe(self.input_path, timeout=self.config.subprocess_timeout,
                              ffprobe_bin=self.config.ffprobe_bin, token=self.token)
        self.resolutions = select_resolutions(self.metadata.width, self.config.resolution_ladder)
        logger.info("Selected renditions: %s", ", ".join(p.name for p in self.resolutions))

    def _encode(self) -> None:
        self.audio_tracks = plan_audio_tracks(self.metadata.audio_streams, self.audio_dir)
        tasks = build_rendition_tasks(self.input_path, self.resolutions, self.temp_dir, self.config)
        tasks.extend(build_audio_tasks(self.input_path, self.metadata.audio_streams,
                                       self.audio_tracks, self.config))

        scheduler = EncodeScheduler(
            self.config.max_concurrent_encodes, token=self.token,
            memory_reserve=self.config.memory_reserve,
            thread_name_prefix=f"{self.job_key}-encode",
        )
        scheduler.run_all(tasks)
        logger.info("Encoded %d rendition(s) and %d audio track(s), at most %d at once",
                    len(self.resolutions), len(self.audio_tracks), scheduler.peak_running)

        self.token.raise_if_cancelled()
        self.subtitle_tracks = find_subtitles(self.subtitle_dir)

    def _publish(self, staging_dir: Path) -> None:
        """Swap a complete package into package_dir, dropping the earlier one"""
        package_dir = self.package_dir
        previous_dir = self.output_dir / f".{package_dir.name}.previous"
        if previous_dir.exists():
            shutil.rmtree(previous_dir)
        if package_dir.exists():
            os.replace(package_dir, previous_dir)
        try:
            os.replace(staging_dir, package_dir)
        except OSError:
            if previous_dir.exists():
                os.replace(previous_dir, package_dir)
            raise
        shutil.rmtree(previous_dir, ignore_errors=True)
        logger.info("Published package %s", package_dir)

    def _package(self) -> JobResult:
        self.token.raise_if_cancelled(module="packager")
        staging_dir = self.staging_dir
        if staging_dir.exists():
            logger.warning("Removing leftover staging directory %s", staging_dir)
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

        try:
            if self.config.encryption_enabled:
                self.clear_key = generate_clear_key()
                write_clear_key(self.clear_key, staging_dir)
            package_all(
                staging_dir, self.temp_dir, self.resolutions,
                self.audio_tracks, self.subtitle_tracks,
                clear_key=self.clear_key, config=self.config, token=self.token,
            )
            self.token.raise_if_cancelled(module="packager")
            self._publish(staging_dir)
        except BaseException:
            logger.warning("Discarding unpublished package %s", staging_dir)
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        package_dir = self.package_dir
        return JobResult(
            output_dir=package_dir,
            manifest_path=package_dir / MPD_FILENAME,
            hls_master_path=package_dir / HLS_MASTER_FILENAME,
            clear_key_path=package_dir / CLEARKEY_FILENAME if self.clear_key else None,
            resolutions=self.resolutions,
            audio_tracks=list(self.audio_tracks),
            subtitle_tracks=list(self.subtitle_tracks),
        )

    def run(self) -> JobResult:
        """
        Run every stage of the job.

        Returns:
            JobResult: Paths of the published package

        Raises:
            JobStateError: If the job was already run
            JobCancelledError: If the job was cancelled
            VodpackError: The error of the failing stage
        """
        with self._lock:
            if self._started:
                raise JobStateError(f"Job {self.job_key} has already been run", module="pipeline")
            self._started = True

        start_time = time.time()
        stage = JobState.CREATED
        try:
            self.token.raise_if_cancelled()
            self._prepare_layout()
            for stage, step in ((JobState.PROBING, self._probe),
                                (JobState.ENCODING, self._encode),
                                (JobState.PACKAGING, self._package)):
                self._transition(stage)
                result = step()
            result.elapsed = time.time() - start_time
            self.result = result
            self._transition(JobState.COMPLETED)
            return result
        except KeyboardInterrupt:
            self.token.cancel()
            self._transition(JobState.CANCELLED)
            raise
        except JobCancelledError as e:
            self.error = e
            self._transition(JobState.CANCELLED)
            raise
        except Exception as e:
            self.error = e
            self.stderr = getattr(e, "stderr", "") or ""
            if self.token.cancelled:
                self._transition(JobState.CANCELLED)
                raise JobCancelledError(f"Job {self.job_key} was cancelled",
                                        module="pipeline") from e
            self.failed_stage = stage
            self._transition(JobState.FAILED)
            logger.error("Job %s failed during %s: %s", self.job_key, stage.value, e)
            raise


class _JobLogFilter(logging.Filter):
    """Pass records emitted by a job's own thread or its encode workers"""

    def __init__(self, job_key: str):
        super().__init__()
        self.job_key = job_key
        self._worker_name = re.compile(rf"{re.escape(job_key)}-encode_\d+")

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.threadName == self.job_key
                or self._worker_name.fullmatch(record.threadName) is not None)


def _setup_job_logging(job: TranscodeJob) -> Tuple[logging.FileHandler, Path]:
    """Setup logging for one job."""
    log_dir = job.config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{job.job_key}_{get_timestamp()}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    file_handler.addFilter(_JobLogFilter(job.job_key))
    logging.getLogger("vodpack").addHandler(file_handler)

    return file_handler, log_file


def _format_elapsed(elapsed: float) -> str:
    hours = int(elapsed // 3600)
    minutes = int((elapsed % 3600) // 60)
    seconds = int(elapsed % 60)
    return f"{hours:02d}h {minutes:02d}m {seconds:02d}s"


def _print_job_summary(job: TranscodeJob, result: JobResult) -> None:
    print_header("Packaging Summary")
    print_summary_row("Output", str(result.output_dir))
    print_summary_row("Renditions", ', '.join(p.name for p in result.resolutions))
    print_summary_row("Audio", ', '.join(t.name for t in result.audio_tracks) or 'none')
    print_summary_row("Subtitles", ', '.join(t.lang for t in result.subtitle_tracks) or 'none')
    print_summary_row("Size", format_size(get_tree_size(result.output_dir)))
    if result.encrypted:
        print_check(f"Encrypted with raw key, key file: {result.clear_key_path.name}")
    else:
        print_warning("Output is not encrypted")
    print_check(f"Completed: {job.job_key}")
    print_check(f"Packaging time: {_format_elapsed(result.elapsed)}")
    print_check(f"Finished at {time.strftime('%a %b %d %H:%M:%S %Z %Y')}")
    print_separator()


def process_job(job: TranscodeJob, cleanup: bool = True) -> JobResult:
    """
    Run a job with its own log file and print a summary

    Args:
        job: Job to run
        cleanup: Remove the job's intermediates after a successful run

    Returns:
        JobResult: Paths of the published package

    Raises:
        VodpackError: If the job failed or was cancelled
    """
    thread = threading.current_thread()
    thread_name = thread.name
    thread.name = job.job_key
    file_handler, log_file = _setup_job_logging(job)

    try:
        print_header(f"Starting job {job.job_key}")
        logger.info("Beginning job %s: %s", job.job_key, job.source)
        logger.info("Job log: %s", log_file.name)
        print_check(f"Source:      {job.source.resolve()}")
        print_check(f"Output path: {job.package_dir.resolve()}")
        print_separator()

        try:
            result = job.run()
        except JobCancelledError:
            print_job_state(job.job_key, job.state.value)
            raise
        except VodpackError as e:
            print_job_state(job.job_key, job.state.value)
            stage = job.failed_stage or job.state
            print_error(f"Job {job.job_key} failed during {stage.value}: {e}")
            if job.stderr:
                print_tool_output(job.stderr)
            raise

        print_job_state(job.job_key, job.state.value)
        if cleanup:
            shutil.rmtree(job.temp_dir, ignore_errors=True)
        _print_job_summary(job, result)
        return result
    finally:
        logging.getLogger("vodpack").removeHandler(file_handler)
        file_handler.close()
        thread.name = thread_name
        logger.info("Closed job log: %s", log_file.name)


class JobRunner:
    """
    Run jobs concurrently, one worker thread per job.

    Two jobs with the same key would share their working and output trees,
    so a key can only be submitted again once its previous job finished.
    Finished jobs are forgotten.
    """

    def __init__(self, max_jobs: Optional[int] = None, cleanup: bool = True):
        self._executor = ThreadPoolExecutor(max_workers=max_jobs, thread_name_prefix="job")
        self._jobs: Dict[str, Tuple[TranscodeJob, Future]] = {}
        self._lock = threading.Lock()
        self.cleanup = cleanup

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(cancel=exc_type is not None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def submit(self, job: TranscodeJob) -> Future:
        """
        Start a job in the background.

        Returns:
            Future resolving to the JobResult, or raising the job's error

        Raises:
            JobStateError: If a job with the same key is still live
        """
        with self._lock:
            live = self._jobs.get(job.job_key)
            if live is not None and not live[1].done():
                raise JobStateError(f"Job {job.job_key} is already running", module="runner")
            future = self._executor.submit(process_job, job, self.cleanup)
            self._jobs[job.job_key] = (job, future)
        # Runs at once if the job already finished, so it must not hold the lock
        future.add_done_callback(lambda f, key=job.job_key: self._forget(key, f))
        logger.info("Submitted job %s", job.job_key)
        return future

    def _forget(self, job_key: str, future: Future) -> None:
        with self._lock:
            entry = self._jobs.get(job_key)
            if entry is not None and entry[1] is future:
                del self._jobs[job_key]

    def get(self, job_key: str) -> Optional[TranscodeJob]:
        """The live job with this key, if any"""
        with self._lock:
            entry = self._jobs.get(job_key)
        return entry[0] if entry else None

    def cancel(self, job_key: str) -> bool:
        """Cancel a live job; returns False if no such job is running"""
        with self._lock:
            entry = self._jobs.get(job_key)
        if entry is None or entry[1].done():
            return False
        job, future = entry
        job.cancel()
        if future.cancel():
            # Still queued: it will never start
            job._transition(JobState.CANCELLED)
        return True

    def shutdown(self, wait: bool = True, cancel: bool = False) -> None:
        if cancel:
            with self._lock:
                keys = list(self._jobs)
            for key in keys:
                self.cancel(key)
        self._executor.shutdown(wait=wait)
