"""Core module for lyric-video."""

from lyric_video.core.config import Settings, get_settings
from lyric_video.core.exceptions import (
    AbortRequested,
    AssetLoadError,
    AudioDecodeError,
    ConfigError,
    EncoderConfigurationUnsupported,
    EncoderRuntimeError,
    ExportInProgressError,
    LyricVideoError,
    SeekTimeout,
)

__all__ = [
    "Settings",
    "get_settings",
    "LyricVideoError",
    "ConfigError",
    "AssetLoadError",
    "SeekTimeout",
    "AudioDecodeError",
    "EncoderConfigurationUnsupported",
    "EncoderRuntimeError",
    "AbortRequested",
    "ExportInProgressError",
]
