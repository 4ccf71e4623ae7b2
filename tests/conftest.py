"""Shared fixtures: fake external tools and a small job configuration."""
import json
import subprocess
import threading
from pathlib import Path

import pytest

from vodpack.config import PipelineConfig
from vodpack.exceptions import JobCancelledError


def probe_data(width=1280, height=720, languages=("en", "es"), duration="60.0"):
    """ffprobe JSON for a source with one video stream and the given audio languages."""
    streams = [{
        "index": 0,
        "codec_type": "video",
        "codec_name": "h264",
        "width": width,
        "height": height,
        "duration": duration,
    }]
    for position, lang in enumerate(languages, start=1):
        stream = {
            "index": position,
            "codec_type": "audio",
            "codec_name": "ac3",
            "channels": 6,
            "sample_rate": "48000",
        }
        if lang is not None:
            stream["tags"] = {"language": lang}
        streams.append(stream)
    return {"streams": streams, "format": {"duration": duration}}


def _option(cmd, name):
    return cmd[cmd.index(name) + 1]


class FakeTools:
    """Stand-in for run_cmd that answers ffprobe with ``source_info`` and
    writes what ffmpeg and packager would write.

    Commands whose text contains a string in ``fail_on`` exit with code 1.
    When ``block_encodes`` is set, encodes wait until their token is
    cancelled.
    """

    def __init__(self):
        self.calls = []
        self.source_info = probe_data()
        self.fail_on = []
        self.block_encodes = False
        self.encode_started = threading.Event()
        self._lock = threading.Lock()

    @property
    def encode_calls(self):
        return [cmd for cmd in self.calls if Path(cmd[0]).name == "ffmpeg"]

    @property
    def packager_calls(self):
        return [cmd for cmd in self.calls if Path(cmd[0]).name == "packager"]

    def __call__(self, cmd, timeout=None, token=None, check=True):
        with self._lock:
            self.calls.append(list(cmd))
        text = " ".join(cmd)
        if any(marker in text for marker in self.fail_on):
            raise subprocess.CalledProcessError(1, cmd, output="", stderr=f"boom: {cmd[-1]}")

        if Path(cmd[0]).name == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, json.dumps(self.source_info), "")
        if Path(cmd[0]).name == "ffmpeg":
            self.encode_started.set()
            if self.block_encodes and token is not None:
                if token.wait(10):
                    raise JobCancelledError("Command cancelled: ffmpeg", module="run_cmd")
            Path(cmd[-1]).write_bytes(b"\x00" * 64)
        elif Path(cmd[0]).name == "packager":
            for part in cmd[1:]:
                if not part.startswith("input="):
                    continue
                fields = dict(item.split("=", 1) for item in part.split(","))
                if "init_segment" in fields:
                    Path(fields["init_segment"]).write_bytes(b"init")
            Path(_option(cmd, "--mpd_output")).write_text("<MPD/>")
            Path(_option(cmd, "--hls_master_playlist_output")).write_text("#EXTM3U\n")
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def fake_tools(mocker):
    tools = FakeTools()
    mocker.patch("vodpack.command_jobs.run_cmd", side_effect=tools)
    return tools


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        max_concurrent_encodes=2,
        memory_reserve=0.0,
        log_dir=tmp_path / "logs",
        ffmpeg_bin="ffmpeg",
        ffprobe_bin="ffprobe",
        packager_bin="packager",
    )


@pytest.fixture
def source(tmp_path):
    source = tmp_path / "movie.mkv"
    source.write_bytes(b"\x1aE\xdf\xa3")
    return source
