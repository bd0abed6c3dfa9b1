"""Encode backends and codec selection."""

from lyric_video.encode.codecs import CodecSpec, dimensions_for, select_codec
from lyric_video.encode.base import (
    AudioChunkWriter,
    EncodeBackend,
    FrameExactEncoder,
    RenderOptions,
    TrackJob,
    frame_count,
)
from lyric_video.encode.live import LiveCaptureBackend, MonotonicPlaybackClock
from lyric_video.encode.pipe import PipeBackend
from lyric_video.encode.sequence import SequenceBackend

__all__ = [
    "CodecSpec",
    "select_codec",
    "dimensions_for",
    "AudioChunkWriter",
    "EncodeBackend",
    "FrameExactEncoder",
    "RenderOptions",
    "TrackJob",
    "frame_count",
    "PipeBackend",
    "SequenceBackend",
    "LiveCaptureBackend",
    "MonotonicPlaybackClock",
]
