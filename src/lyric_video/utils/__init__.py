"""Utility functions for lyric-video."""

from lyric_video.utils.color import darken, lerp_color, parse_color, with_alpha
from lyric_video.utils.ffmpeg import FFmpegWrapper
from lyric_video.utils.time import TimeUtils

__all__ = [
    "TimeUtils",
    "FFmpegWrapper",
    "parse_color",
    "with_alpha",
    "darken",
    "lerp_color",
]
