"""Unit tests for vodpack configuration."""
from pathlib import Path

import pytest

from vodpack.config import PipelineConfig, default_max_encodes
from vodpack.exceptions import ConfigurationError
from vodpack.resolution import RESOLUTION_PROFILES, ResolutionProfile

ENV_VARS = (
    "VODPACK_SEGMENT_DURATION", "VODPACK_ENCRYPT",
    "VODPACK_MAX_ENCODES", "VODPACK_TIMEOUT_MS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = PipelineConfig.from_environment()
    assert config.resolution_ladder == RESOLUTION_PROFILES
    assert config.segment_duration_seconds == 6
    assert config.encryption_enabled is True
    assert config.max_concurrent_encodes == default_max_encodes() >= 1
    assert config.subprocess_timeout_ms is None
    assert config.subprocess_timeout is None


def test_environment(clean_env):
    clean_env.setenv("VODPACK_SEGMENT_DURATION", "4")
    clean_env.setenv("VODPACK_ENCRYPT", "false")
    clean_env.setenv("VODPACK_MAX_ENCODES", "3")
    clean_env.setenv("VODPACK_TIMEOUT_MS", "1500")

    config = PipelineConfig.from_environment()

    assert config.segment_duration_seconds == 4
    assert config.encryption_enabled is False
    assert config.max_concurrent_encodes == 3
    assert config.subprocess_timeout == 1.5


def test_overrides_win_and_none_falls_through(clean_env):
    clean_env.setenv("VODPACK_MAX_ENCODES", "3")

    config = PipelineConfig.from_environment(max_concurrent_encodes=None, segment_duration_seconds=2)

    assert config.max_concurrent_encodes == 3
    assert config.segment_duration_seconds == 2


def test_non_integer_environment(clean_env):
    clean_env.setenv("VODPACK_SEGMENT_DURATION", "six")
    with pytest.raises(ConfigurationError, match="VODPACK_SEGMENT_DURATION"):
        PipelineConfig.from_environment()


@pytest.mark.parametrize("value", ["0", "-2"])
def test_zero_max_encodes_from_environment_is_rejected(clean_env, value):
    clean_env.setenv("VODPACK_MAX_ENCODES", value)
    with pytest.raises(ConfigurationError, match="concurrent"):
        PipelineConfig.from_environment()


@pytest.mark.parametrize("overrides", [
    {"segment_duration_seconds": 0},
    {"max_concurrent_encodes": 0},
    {"subprocess_timeout_ms": -1},
    {"memory_reserve": 1.0},
    {"resolution_ladder": ()},
    {"resolution_ladder": (ResolutionProfile("a", 10, 10, "1k"), ResolutionProfile("a", 20, 20, "2k"))},
])
def test_validation(clean_env, overrides):
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_environment(**overrides)


def test_ladder_is_sorted_and_log_dir_is_path():
    config = PipelineConfig(
        resolution_ladder=(ResolutionProfile("b", 20, 20, "2k"), ResolutionProfile("a", 10, 10, "1k")),
        log_dir="/tmp/vodpack-logs",
    )
    assert [p.name for p in config.resolution_ladder] == ["a", "b"]
    assert config.log_dir == Path("/tmp/vodpack-logs")
