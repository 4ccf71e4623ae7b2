"""Unit tests for source probing"""

import json
import sys
import threading
import time
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from conftest import probe_data
from vodpack.exceptions import JobCancelledError, ProbeError
from vodpack.ffprobe import build_probe_command, parse_probe_data, probe
from vodpack.utils import CancellationToken


class TestParseProbeData(unittest.TestCase):
    def test_video_and_audio_streams(self):
        metadata = parse_probe_data(probe_data(1920, 1080, ("eng", None, "und", "ES")))
        self.assertEqual((metadata.width, metadata.height), (1920, 1080))
        self.assertEqual(metadata.duration, 60.0)
        self.assertEqual([s.index for s in metadata.audio_streams], [0, 1, 2, 3])
        self.assertEqual([s.language for s in metadata.audio_streams], ["eng", None, None, "es"])
        self.assertEqual(metadata.audio_streams[0].channels, 6)
        self.assertEqual(metadata.audio_streams[0].sample_rate, 48000)

    def test_duration_falls_back_to_container(self):
        data = probe_data()
        del data["streams"][0]["duration"]
        data["format"]["duration"] = "12.5"
        self.assertEqual(parse_probe_data(data).duration, 12.5)

    def test_missing_duration_is_zero(self):
        data = probe_data()
        del data["streams"][0]["duration"]
        del data["format"]["duration"]
        self.assertEqual(parse_probe_data(data).duration, 0.0)

    def test_cover_art_is_not_the_video_stream(self):
        data = probe_data(1280, 720)
        data["streams"].insert(0, {
            "codec_type": "video", "width": 600, "height": 600,
            "disposition": {"attached_pic": 1},
        })
        self.assertEqual(parse_probe_data(data).width, 1280)

    def test_no_video_stream(self):
        data = {"streams": [{"codec_type": "audio"}], "format": {}}
        with self.assertRaises(ProbeError):
            parse_probe_data(data)

    def test_invalid_geometry(self):
        with self.assertRaises(ProbeError):
            parse_probe_data(probe_data(0, 720))


def write_tool(directory, body):
    """Write an executable stand-in for ffprobe that runs ``body`` under this interpreter."""
    tool = Path(directory) / "ffprobe"
    tool.write_text(f"#!{sys.executable}\nimport sys\n{body}\n")
    tool.chmod(0o755)
    return tool


class TestProbe(unittest.TestCase):
    """probe() runs a real child process standing in for ffprobe."""

    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.source = self.tmp / "movie.mkv"
        self.source.write_bytes(b"data")
        self.argv_file = self.tmp / "argv.json"

    def tearDown(self):
        self._tmp.cleanup()

    def reporting_tool(self, data):
        return write_tool(self.tmp, (
            "import json\n"
            f"open({str(self.argv_file)!r}, 'w').write(json.dumps(sys.argv[1:]))\n"
            f"print({json.dumps(data)!r})"
        ))

    def test_reads_ffprobe_json(self):
        tool = self.reporting_tool(probe_data(854, 480, ("en",)))

        metadata = probe(self.source, timeout=30, ffprobe_bin=str(tool))

        self.assertEqual((metadata.width, metadata.height), (854, 480))
        self.assertEqual([s.language for s in metadata.audio_streams], ["en"])
        self.assertEqual(json.loads(self.argv_file.read_text()), [
            "-v", "error", "-show_format", "-show_streams", "-of", "json", str(self.source),
        ])

    def test_build_probe_command(self):
        cmd = build_probe_command(self.source, "/opt/ffprobe")
        self.assertEqual(cmd[0], "/opt/ffprobe")
        self.assertEqual(cmd[-1], str(self.source))
        self.assertNotIn("-timeout", cmd)

    def test_missing_file(self):
        tool = self.reporting_tool(probe_data())
        with self.assertRaises(ProbeError):
            probe(self.tmp / "missing.mkv", ffprobe_bin=str(tool))
        self.assertFalse(self.argv_file.exists())

    def test_ffprobe_failure_carries_stderr(self):
        tool = write_tool(self.tmp, "sys.stderr.write('Invalid data found')\nsys.exit(1)")
        with self.assertRaises(ProbeError) as ctx:
            probe(self.source, ffprobe_bin=str(tool))
        self.assertIn("Invalid data found", ctx.exception.stderr)
        self.assertIn("exited with code 1", str(ctx.exception))

    def test_invalid_json(self):
        tool = write_tool(self.tmp, "print('not json')")
        with self.assertRaises(ProbeError) as ctx:
            probe(self.source, ffprobe_bin=str(tool))
        self.assertIn("invalid JSON", str(ctx.exception))

    def test_timeout_kills_ffprobe(self):
        tool = write_tool(self.tmp, "import time\ntime.sleep(30)")
        start = time.time()
        with self.assertRaises(ProbeError) as ctx:
            probe(self.source, timeout=0.5, ffprobe_bin=str(tool))
        self.assertIn("timed out", str(ctx.exception))
        self.assertLess(time.time() - start, 10)

    def test_cancel_kills_ffprobe(self):
        tool = write_tool(self.tmp, "import time\ntime.sleep(30)")
        token = CancellationToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        start = time.time()
        try:
            with self.assertRaises(JobCancelledError):
                probe(self.source, ffprobe_bin=str(tool), token=token)
        finally:
            timer.cancel()
        self.assertLess(time.time() - start, 10)

    def test_ffprobe_not_installed(self):
        with self.assertRaises(ProbeError) as ctx:
            probe(self.source, ffprobe_bin=str(self.tmp / "no-such-ffprobe"))
        self.assertIn("Could not start", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
