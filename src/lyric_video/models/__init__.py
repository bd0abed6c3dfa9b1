"""Data models for lyric-video."""

from lyric_video.models.lyrics import (
    DEFAULT_WORD_TAIL,
    LyricLine,
    Word,
    WordState,
    active_line_index,
    classify_words,
    shift_lines,
)
from lyric_video.models.render_config import LayerVisibility, RenderConfig, VideoPreset
from lyric_video.models.slide import Slide, active_visual_slide
from lyric_video.models.task import ExportOptions, ExportProgress, ExportResult, ExportState
from lyric_video.models.track import AudioMetadata, Project, Track

__all__ = [
    "DEFAULT_WORD_TAIL",
    "Word",
    "WordState",
    "LyricLine",
    "active_line_index",
    "classify_words",
    "shift_lines",
    "Slide",
    "active_visual_slide",
    "RenderConfig",
    "LayerVisibility",
    "VideoPreset",
    "AudioMetadata",
    "Track",
    "Project",
    "ExportState",
    "ExportProgress",
    "ExportResult",
    "ExportOptions",
]
