"""
vodpack - A VOD transcoding and packaging pipeline

This package turns one source video into an adaptive-streaming package:
- Probes the source and selects renditions from a fixed resolution ladder
- Encodes video renditions and audio tracks in parallel with ffmpeg
- Normalizes SRT subtitles to WebVTT
- Optionally generates a raw ClearKey content key
- Packages everything with Shaka Packager into DASH and HLS manifests

Each job owns its own temp and output tree and fails as a whole: no
manifest is published for a job that did not complete.
"""

__version__ = "0.1.0"
