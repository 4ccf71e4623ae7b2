"""FFProbe utilities for source inspection

This package provides:
- Running ffprobe as a cancellable command job and parsing its JSON
- Reducing the result to the SourceMetadata the pipeline needs
"""

from .metadata import build_probe_command, probe, parse_probe_data

__all__ = [
    'build_probe_command',
    'probe',
    'parse_probe_data',
]
