"""Typography and layout parameters per video preset."""

from dataclasses import dataclass
from typing import Literal

from lyric_video.models.render_config import VideoPreset

InfoLayout = Literal["custom", "centered_bottom", "classic", "none"]


@dataclass(frozen=True)
class PresetLayout:
    """Layout record consulted by the compositor.

    Sizes are (portrait, landscape) pixels at 1080p and are scaled down for
    smaller outputs.
    """

    font_hint: str = "sans"
    font_size: tuple[float, float] = (50, 60)
    secondary_font_size: tuple[float, float] = (25, 30)
    line_spacing: tuple[float, float] = (80, 100)
    uppercase: bool = False
    align: Literal["left", "center", "right"] = "center"
    big_layout: bool = False
    wrap_active: bool = False
    window: int = 2
    info_layout: InfoLayout = "classic"
    info_bottom_margin: float = 80
    info_title_upper: bool = False
    pin_subtitle: bool = False
    background_only: bool = False
    active_weight: Literal["normal", "bold", "black"] = "bold"
    shadow: bool = True

    def pick(self, pair: tuple[float, float], portrait: bool) -> float:
        return pair[0] if portrait else pair[1]


_BIG = dict(
    font_size=(80, 110),
    line_spacing=(110, 140),
    big_layout=True,
    wrap_active=True,
    window=1,
    info_layout="centered_bottom",
)
_THEMED = dict(
    font_size=(60, 75),
    line_spacing=(90, 120),
    big_layout=True,
    wrap_active=True,
    window=1,
    info_layout="centered_bottom",
)

PRESET_LAYOUTS: dict[VideoPreset, PresetLayout] = {
    VideoPreset.DEFAULT: PresetLayout(),
    VideoPreset.CLASSIC: PresetLayout(font_hint="serif"),
    VideoPreset.MONOSPACE: PresetLayout(font_hint="mono"),
    VideoPreset.LARGE: PresetLayout(
        font_size=(90, 120),
        line_spacing=(110, 140),
        align="left",
        big_layout=True,
        wrap_active=True,
        window=1,
        active_weight="black",
    ),
    VideoPreset.LARGE_UPPER: PresetLayout(
        **{**_BIG, "info_layout": "classic"}, uppercase=True, align="left", active_weight="black"
    ),
    VideoPreset.BIG_CENTER: PresetLayout(**_BIG, uppercase=True, active_weight="black"),
    VideoPreset.METAL: PresetLayout(**_BIG, font_hint="metal", uppercase=True, active_weight="black"),
    VideoPreset.KIDS: PresetLayout(**_BIG, font_hint="kids"),
    VideoPreset.TECH: PresetLayout(
        **_BIG, font_hint="tech", uppercase=True, active_weight="black", info_title_upper=True
    ),
    VideoPreset.SAD: PresetLayout(**_THEMED, font_hint="sad"),
    VideoPreset.ROMANTIC: PresetLayout(**_THEMED, font_hint="romantic"),
    VideoPreset.GOTHIC: PresetLayout(**_THEMED, font_hint="gothic"),
    VideoPreset.TESTING: PresetLayout(**_BIG, info_bottom_margin=120),
    VideoPreset.TESTING_UP: PresetLayout(**_BIG, uppercase=True, info_bottom_margin=120),
    VideoPreset.ONE_LINE: PresetLayout(**_BIG, info_bottom_margin=120),
    VideoPreset.ONE_LINE_UP: PresetLayout(**_BIG, uppercase=True, info_bottom_margin=120),
    VideoPreset.SLIDESHOW: PresetLayout(
        font_size=(30, 40), wrap_active=True, info_layout="centered_bottom"
    ),
    VideoPreset.SUBTITLE: PresetLayout(
        font_size=(30, 40), wrap_active=True, pin_subtitle=True, info_layout="none"
    ),
    VideoPreset.JUST_VIDEO: PresetLayout(background_only=True, info_layout="none"),
    VideoPreset.NONE: PresetLayout(background_only=True, info_layout="none"),
    VideoPreset.CUSTOM: PresetLayout(**{**_BIG, "info_layout": "custom"}),
}


def layout_for(preset: VideoPreset | str) -> PresetLayout:
    """Layout for a preset; unknown names get the default layout."""
    try:
        return PRESET_LAYOUTS[VideoPreset(preset)]
    except ValueError:
        return PRESET_LAYOUTS[VideoPreset.DEFAULT]
