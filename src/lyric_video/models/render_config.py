"""Render configuration consumed read-only by the compositor."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Position = Literal["top-left", "top-right", "bottom-left", "bottom-right", "top-center", "bottom-center"]


class VideoPreset(str, Enum):
    """Typography / layout presets."""

    DEFAULT = "default"
    LARGE = "large"
    CLASSIC = "classic"
    LARGE_UPPER = "large_upper"
    MONOSPACE = "monospace"
    BIG_CENTER = "big_center"
    METAL = "metal"
    KIDS = "kids"
    SAD = "sad"
    ROMANTIC = "romantic"
    TECH = "tech"
    GOTHIC = "gothic"
    TESTING = "testing"
    TESTING_UP = "testing_up"
    ONE_LINE = "one_line"
    ONE_LINE_UP = "one_line_up"
    SLIDESHOW = "slideshow"
    JUST_VIDEO = "just_video"
    SUBTITLE = "subtitle"
    NONE = "none"
    CUSTOM = "custom"


class LayerVisibility(BaseModel):
    """Per-layer visibility; a layer missing from a map is visible."""

    model_config = ConfigDict(frozen=True)

    visual: dict[int, bool] = Field(default_factory=dict)
    audio: dict[int, bool] = Field(default_factory=dict)


class RenderConfig(BaseModel):
    """Flat, fully-enumerated render options. Every default lives here."""

    model_config = ConfigDict(frozen=True)

    # Background
    background_source: Literal["timeline", "custom", "color", "gradient", "smart-gradient", "image"] = (
        "timeline"
    )
    background_color: str = "#000000"
    background_gradient: tuple[str, str] = ("#312e81", "#000000")
    background_image: str | None = None
    background_blur_strength: float = Field(default=0.0, ge=0)
    enable_gradient_overlay: bool = False

    # Slide transitions
    visual_transition_type: Literal["none", "crossfade", "fade-to-black"] = "none"
    visual_transition_duration: float = Field(default=1.0, gt=0)

    # Lyrics text
    text_align: Literal["left", "center", "right"] | None = None
    content_position: Literal["top", "center", "bottom"] = "center"
    font_family: str = "sans-serif"
    font_size_scale: float = Field(default=1.0, gt=0)
    font_color: str = "#ffffff"
    font_weight: Literal["normal", "bold"] = "bold"
    font_style: Literal["normal", "italic"] = "normal"
    text_decoration: Literal["none", "underline", "line-through"] = "none"
    text_case: Literal["none", "upper", "lower", "title", "sentence", "invert"] = "none"
    text_effect: str = "preset"
    text_animation: str = "none"
    transition_effect: str = "none"
    lyric_display_mode: Literal["all", "previous-next", "next-only", "active-only", "preset"] = "preset"
    lyric_style_target: Literal["active-only", "all"] = "active-only"
    lyric_line_height: float = Field(default=1.0, gt=0)
    show_lyrics: bool = True

    # Highlight
    highlight_effect: str = "none"
    highlight_color: str = "#facc15"
    highlight_background: str = "#ffffff33"
    use_custom_highlight_colors: bool = False

    # Song info overlay
    show_title: bool = True
    show_artist: bool = True
    show_cover: bool = True
    info_position: Position = "top-left"
    info_style: Literal["classic", "modern", "box", "minimal", "modern_art", "circle_art"] = "classic"
    info_margin_scale: float = Field(default=1.0, ge=0)
    info_size_scale: float = Field(default=1.0, gt=0)
    info_font_color: str | None = None

    # Intro card
    show_intro: bool = True
    intro_mode: Literal["auto", "manual"] = "auto"
    intro_text: str = ""

    # Channel watermark
    show_channel_info: bool = False
    channel_info_text: str = ""
    channel_info_image: str | None = None
    channel_info_position: Position = "bottom-right"
    channel_info_size_scale: float = Field(default=1.0, gt=0)

    layer_visibility: LayerVisibility = Field(default_factory=LayerVisibility)
