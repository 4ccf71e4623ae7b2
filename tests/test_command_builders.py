"""Unit tests for ffmpeg command building"""

import unittest
from pathlib import Path

from vodpack.resolution import RESOLUTION_PROFILES
from vodpack.video.command_builders import (
    build_audio_encode_command, build_keyframe_expr, build_scale_filter,
    build_video_encode_command
)


PROFILES = {profile.name: profile for profile in RESOLUTION_PROFILES}


class TestVideoEncodeCommand(unittest.TestCase):
    def setUp(self):
        self.input_file = Path("/tmp/job/input.mkv")
        self.output_file = Path("/tmp/job/temp/720p/video_720p.mp4")

    def option(self, cmd, name):
        return cmd[cmd.index(name) + 1]

    def test_rendition_settings(self):
        cmd = build_video_encode_command(self.input_file, self.output_file, PROFILES["720p"])
        self.assertEqual(cmd[0], "ffmpeg")
        self.assertEqual(self.option(cmd, "-i"), str(self.input_file))
        self.assertEqual(self.option(cmd, "-map"), "0:v:0")
        self.assertEqual(self.option(cmd, "-c:v"), "libx264")
        self.assertEqual(self.option(cmd, "-preset"), "fast")
        self.assertEqual(self.option(cmd, "-profile:v"), "main")
        self.assertEqual(self.option(cmd, "-maxrate"), "2500k")
        self.assertEqual(self.option(cmd, "-bufsize"), "5000k")
        self.assertEqual(self.option(cmd, "-vf"), "scale=-2:720")
        self.assertEqual(self.option(cmd, "-pix_fmt"), "yuv420p")
        self.assertIn("-an", cmd)
        self.assertEqual(cmd[-1], str(self.output_file))

    def test_keyframes_follow_segment_duration(self):
        cmd = build_video_encode_command(self.input_file, self.output_file,
                                         PROFILES["240p"], segment_duration=4)
        self.assertEqual(self.option(cmd, "-force_key_frames"), "expr:gte(t,n_forced*4)")

    def test_threads_and_binary(self):
        cmd = build_video_encode_command(self.input_file, self.output_file, PROFILES["240p"],
                                         threads=0, ffmpeg_bin="/opt/ffmpeg")
        self.assertEqual(cmd[0], "/opt/ffmpeg")
        self.assertNotIn("-threads", cmd)

    def test_helpers(self):
        self.assertEqual(build_scale_filter(1080), "scale=-2:1080")
        self.assertEqual(build_keyframe_expr(6), "expr:gte(t,n_forced*6)")


class TestAudioEncodeCommand(unittest.TestCase):
    def test_audio_stream_mapping(self):
        cmd = build_audio_encode_command(Path("in.mkv"), Path("audio_1_es.mp4"), 1, "es")
        self.assertEqual(cmd[cmd.index("-map") + 1], "0:a:1")
        self.assertEqual(cmd[cmd.index("-c:a") + 1], "aac")
        self.assertEqual(cmd[cmd.index("-b:a") + 1], "128k")
        self.assertIn("language=es", cmd)
        self.assertIn("-vn", cmd)
        self.assertEqual(cmd[-1], "audio_1_es.mp4")

    def test_no_language_metadata(self):
        cmd = build_audio_encode_command(Path("in.mkv"), Path("audio_0_unknown.mp4"), 0)
        self.assertNotIn("-metadata:s:a:0", cmd)


if __name__ == "__main__":
    unittest.main()
