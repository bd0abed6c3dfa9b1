"""Frame rendering."""

from lyric_video.render.compositor import output_scale, render_frame, title_card_text
from lyric_video.render.presets import PRESET_LAYOUTS, PresetLayout, layout_for
from lyric_video.render.text import FontProvider, default_font_provider

__all__ = [
    "render_frame",
    "title_card_text",
    "output_scale",
    "PresetLayout",
    "PRESET_LAYOUTS",
    "layout_for",
    "FontProvider",
    "default_font_provider",
]
