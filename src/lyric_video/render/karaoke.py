"""Per-word karaoke highlighting."""

import math

from PIL import Image, ImageDraw, ImageFilter

from lyric_video.models.lyrics import Word, WordState, classify_words, word_progress
from lyric_video.models.render_config import RenderConfig
from lyric_video.render.text import Font, composite_clipped, font_height, text_width
from lyric_video.utils.color import RGBA, parse_color, with_alpha

# Highlight colour carried by a karaoke variant name
VARIANT_COLORS = {
    "karaoke-blue": "#3b82f6",
    "karaoke-purple": "#a855f7",
    "karaoke-green": "#22c55e",
    "karaoke-pink": "#ec4899",
    "karaoke-cyan": "#06b6d4",
    "karaoke-glow-blue": "#60a5fa",
    "karaoke-glow-pink": "#f472b6",
    "karaoke-gold": "#d4af37",
    "karaoke-fire": "#ff4500",
    "karaoke-frozen": "#03a9f4",
}

GLOW_STYLES = {"karaoke-neon", "karaoke-glow-blue", "karaoke-glow-pink", "karaoke-soft-glow", "karaoke-neon-multi"}
SCALE_STYLES = {"karaoke-scale", "karaoke-bounce", "karaoke-pulse", "karaoke-heartbeat"}
BOX_STYLES = {"karaoke-box": 0, "karaoke-rounded": 8, "karaoke-pill": -1}


def is_karaoke(effect: str | None) -> bool:
    return bool(effect) and effect.startswith("karaoke")


def highlight_color(effect: str, config: RenderConfig) -> RGBA:
    if config.use_custom_highlight_colors or effect not in VARIANT_COLORS:
        return parse_color(config.highlight_color, (250, 204, 21, 255))
    return parse_color(VARIANT_COLORS[effect])


def render_karaoke_tile(
    words: list[Word],
    time: float,
    line_end: float | None,
    font: Font,
    base_fill: RGBA,
    effect: str,
    config: RenderConfig,
) -> tuple[Image.Image, int]:
    """
    Render a line word by word, styled by each word's karaoke state.

    Upcoming words use the base colour, completed words the highlight colour,
    and the active word the effect's in-progress style.

    Returns:
        (tile, padding) in the same form as ``render_text_tile``
    """
    states = classify_words(words, time, line_end)
    highlight = highlight_color(effect, config)
    space = text_width(font, " ")

    offsets = []
    cursor = 0.0
    for word in words:
        offsets.append(cursor)
        cursor += text_width(font, word.text) + space
    total_width = max(1, int(cursor - space)) if words else 1

    height = max(1, font_height(font))
    pad = max(8, height // 2)
    size = (total_width + 2 * pad, height + 2 * pad)
    tile = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(tile)

    def word_layer(text: str, left: float, color: RGBA, stroke: int = 0) -> Image.Image:
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        ImageDraw.Draw(layer).text(
            (left, pad), text, font=font, fill=color, stroke_width=stroke, stroke_fill=highlight
        )
        return layer

    for i, (word, state) in enumerate(zip(words, states)):
        x = pad + offsets[i]
        width = text_width(font, word.text)

        if state == WordState.UPCOMING:
            draw.text((x, pad), word.text, font=font, fill=base_fill)
            continue

        if state == WordState.COMPLETED:
            if effect == "karaoke-outline":
                tile.alpha_composite(word_layer(word.text, x, base_fill, stroke=2))
            else:
                draw.text((x, pad), word.text, font=font, fill=highlight)
            continue

        progress = word_progress(words, i, time, line_end)

        if effect in BOX_STYLES:
            radius = BOX_STYLES[effect] if BOX_STYLES[effect] >= 0 else height // 2
            background = parse_color(config.highlight_background, (255, 255, 255, 51))
            draw.rounded_rectangle(
                (x - 6, pad - 2, x + width + 6, pad + height + 2), radius=radius, fill=background
            )
            draw.text((x, pad), word.text, font=font, fill=highlight)
        elif effect in GLOW_STYLES:
            tile.alpha_composite(word_layer(word.text, x, highlight).filter(ImageFilter.GaussianBlur(8)))
            draw.text((x, pad), word.text, font=font, fill=highlight)
        elif effect in SCALE_STYLES:
            factor = 1.15
            if effect == "karaoke-bounce":
                lift = int(math.sin(progress * math.pi) * height * 0.15)
            else:
                lift = 0
            layer = word_layer(word.text, x, highlight).crop(
                (int(x), pad, int(x + width) + 1, pad + height)
            )
            scaled = layer.resize((max(1, int(layer.width * factor)), max(1, int(layer.height * factor))))
            dx = int(x - (scaled.width - layer.width) / 2)
            dy = pad - (scaled.height - layer.height) // 2 - lift
            composite_clipped(tile, scaled, dx, dy)
        elif effect == "karaoke-outline":
            tile.alpha_composite(word_layer(word.text, x, base_fill, stroke=2))
        elif effect == "karaoke-underline":
            draw.text((x, pad), word.text, font=font, fill=base_fill)
            under = pad + int(height * 0.95)
            draw.line((x, under, x + width * progress, under), fill=highlight, width=max(2, height // 14))
        elif effect == "karaoke-gradient":
            draw.text((x, pad), word.text, font=font, fill=with_alpha(highlight, 0.5 + 0.5 * progress))
        else:
            # Sweep: base word with the highlight revealed left to right
            draw.text((x, pad), word.text, font=font, fill=base_fill)
            reveal = int(round(width * progress))
            if reveal > 0:
                swept = word_layer(word.text, x, highlight).crop((int(x), 0, int(x) + reveal, size[1]))
                tile.alpha_composite(swept, (int(x), 0))

    return tile, pad
