"""Colour parsing helpers."""

from PIL import ImageColor

RGBA = tuple[int, int, int, int]


def parse_color(value: str | None, default: RGBA = (255, 255, 255, 255)) -> RGBA:
    """Parse a CSS-ish colour (#rgb, #rrggbb, #rrggbbaa, names, rgb()) to RGBA.

    Unparseable input falls back to ``default`` instead of raising.
    """
    if not value:
        return default
    try:
        rgba = ImageColor.getcolor(value, "RGBA")
    except ValueError:
        return default
    return tuple(rgba)  # type: ignore[return-value]


def with_alpha(color: RGBA, alpha: float) -> RGBA:
    """Replace the alpha channel with a 0..1 factor of full opacity."""
    return color[0], color[1], color[2], max(0, min(255, round(255 * alpha)))


def darken(color: RGBA, factor: float) -> RGBA:
    return int(color[0] * factor), int(color[1] * factor), int(color[2] * factor), color[3]


def lerp_color(a: RGBA, b: RGBA, t: float) -> RGBA:
    t = max(0.0, min(1.0, t))
    return tuple(round(a[i] + (b[i] - a[i]) * t) for i in range(4))  # type: ignore[return-value]
