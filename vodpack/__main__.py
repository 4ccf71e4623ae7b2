"""
Command-line interface for the vodpack packaging pipeline
"""
import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import LOG_DIR, WORKING_ROOT, PipelineConfig
from .exceptions import ConfigurationError, DependencyError, JobCancelledError, VodpackError
from .formatting import print_error, print_header, print_info, print_success
from .logging import configure_logging
from .pipeline import TranscodeJob, process_job
from .utils import check_dependencies

log = logging.getLogger("vodpack")


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="vodpack",
        description="Transcode a video into an adaptive DASH/HLS package"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set logging level (default: $VODPACK_LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--job-key",
        dest="job_key",
        default=None,
        help="Name of the job's output directory (default: source name)"
    )
    parser.add_argument(
        "--subtitles",
        type=Path,
        default=None,
        help="Directory with {lang}.srt / {lang}.vtt caption files"
    )
    parser.add_argument(
        "--work-dir",
        dest="work_dir",
        type=Path,
        default=WORKING_ROOT,
        help="Root for per-job intermediates (default: %(default)s)"
    )
    parser.add_argument(
        "--no-encrypt",
        dest="encrypt",
        action="store_false",
        default=None,
        help="Package into free/ without a content key"
    )
    parser.add_argument(
        "--segment-duration",
        dest="segment_duration",
        type=int,
        default=None,
        help="Target segment length in seconds"
    )
    parser.add_argument(
        "--max-concurrent-encodes",
        dest="max_concurrent_encodes",
        type=int,
        default=None,
        help="Upper bound on simultaneous ffmpeg processes"
    )
    parser.add_argument(
        "--timeout-ms",
        dest="timeout_ms",
        type=int,
        default=None,
        help="Kill any external tool running longer than this"
    )
    parser.add_argument(
        "--keep-temp",
        dest="keep_temp",
        action="store_true",
        help="Keep intermediates after a successful job"
    )
    parser.add_argument(
        "source",
        type=Path,
        help="Source video file or project directory"
    )
    parser.add_argument(
        "output_root",
        type=Path,
        help="Root of the output tree; the package goes to OUTPUT_ROOT/JOB_KEY"
    )
    return parser.parse_args(argv)


def require_tools(config):
    """Raise DependencyError unless ffmpeg, ffprobe and the packager are installed"""
    tools = (config.ffmpeg_bin, config.ffprobe_bin, config.packager_bin)
    if not check_dependencies(tools):
        raise DependencyError(f"Missing required dependencies: need {', '.join(tools)}",
                              module="cli")


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    configure_logging(args.log_level, LOG_DIR)

    print_header(f"Starting vodpack v{__version__}")

    try:
        config = PipelineConfig.from_environment(
            encryption_enabled=args.encrypt,
            segment_duration_seconds=args.segment_duration,
            max_concurrent_encodes=args.max_concurrent_encodes,
            subprocess_timeout_ms=args.timeout_ms,
        )
    except ConfigurationError as e:
        log.error("Invalid configuration: %s", e)
        return 1

    try:
        require_tools(config)
        print_info(f"Processing {args.source}...")
        job = TranscodeJob(
            args.source, args.output_root,
            job_key=args.job_key,
            subtitle_dir=args.subtitles,
            config=config,
            work_root=args.work_dir,
        )
        result = process_job(job, cleanup=not args.keep_temp)
    except KeyboardInterrupt:
        log.warning("Packaging interrupted by user")
        return 130
    except JobCancelledError as e:
        log.warning("Job cancelled: %s", e)
        return 130
    except VodpackError as e:
        print_error(str(e))
        return 1
    except Exception as e:
        log.exception("Packaging failed: %s", e)
        return 1

    print_success(f"Successfully packaged {args.source.name} into {result.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
