"""Font lookup, wrapping and text tiles with effects."""

from functools import lru_cache
from pathlib import Path

from loguru import logger
from PIL import Image, ImageDraw, ImageFilter, ImageFont

from lyric_video.utils.color import RGBA, lerp_color, parse_color, with_alpha

# Font family hints used by presets -> families tried in order
FONT_FALLBACKS = {
    "sans": ["sans-serif", "sans"],
    "serif": ["serif"],
    "mono": ["monospace", "mono"],
    "metal": ["Metal Mania", "serif"],
    "kids": ["Fredoka One", "sans-serif"],
    "sad": ["Shadows Into Light", "sans-serif"],
    "romantic": ["Dancing Script", "serif"],
    "tech": ["Orbitron", "sans-serif"],
    "gothic": ["UnifrakturMaguntia", "serif"],
}

WEIGHT_SUFFIXES = {"normal": ("",), "bold": ("-bold", ""), "black": ("-black", "-bold", "")}

Font = ImageFont.FreeTypeFont | ImageFont.ImageFont


class FontProvider:
    """Resolves family names to PIL fonts from configured font files.

    Families without a configured file fall back to Pillow's bundled font.
    A configured ``<family>-bold`` or ``<family>-black`` entry is used for
    heavier weights.
    """

    def __init__(self, fonts: dict[str, Path] | None = None):
        self.fonts = {name.lower(): Path(path) for name, path in (fonts or {}).items()}
        self._cache: dict[tuple[str, int, str], Font] = {}

    def candidates(self, family: str | None, hint: str) -> list[str]:
        names = []
        if family:
            names.append(family)
        names.extend(FONT_FALLBACKS.get(hint, [hint]))
        names.extend(FONT_FALLBACKS["sans"])
        return [n.lower() for n in names]

    def get(self, family: str | None, size: float, hint: str = "sans", weight: str = "normal") -> Font:
        size = max(1, int(round(size)))
        key = (f"{family}|{hint}", size, weight)
        if key in self._cache:
            return self._cache[key]

        font = None
        for name in self.candidates(family, hint):
            for suffix in WEIGHT_SUFFIXES.get(weight, ("",)):
                path = self.fonts.get(name + suffix)
                if path is None:
                    continue
                try:
                    font = ImageFont.truetype(str(path), size)
                    break
                except OSError as e:
                    logger.warning(f"Cannot load font {path}: {e}")
            if font is not None:
                break

        if font is None:
            font = ImageFont.load_default(size=size)

        self._cache[key] = font
        return font


def text_width(font: Font, text: str) -> float:
    return font.getlength(text)


def font_height(font: Font) -> int:
    ascent, descent = font.getmetrics()
    return ascent + descent


def apply_case(text: str, case: str) -> str:
    if case == "upper":
        return text.upper()
    if case == "lower":
        return text.lower()
    if case == "title":
        return text.title()
    if case == "sentence":
        return text[:1].upper() + text[1:].lower()
    if case == "invert":
        return text.swapcase()
    return text


def wrap_text(text: str, font: Font, max_width: float) -> list[str]:
    """
    Word-wrap text, hard-breaking tokens wider than the limit.

    Explicit newlines always break. Words are joined greedily while the
    joined width stays under ``max_width``; any resulting row still too wide
    is split per character.
    """
    if "\n" in text:
        rows = []
        for part in text.split("\n"):
            rows.extend(wrap_text(part, font, max_width))
        return rows

    words = text.split(" ")
    pre_rows = []
    current = words[0] if words else ""
    for word in words[1:]:
        candidate = f"{current} {word}"
        if text_width(font, candidate) < max_width:
            current = candidate
        else:
            pre_rows.append(current)
            current = word
    pre_rows.append(current)

    rows = []
    for row in pre_rows:
        if text_width(font, row) <= max_width:
            rows.append(row)
            continue
        chunk = ""
        for char in row:
            if text_width(font, chunk + char) <= max_width:
                chunk += char
            else:
                if chunk:
                    rows.append(chunk)
                chunk = char
        if chunk:
            rows.append(chunk)
    return rows


def _vertical_gradient(size: tuple[int, int], stops: list[tuple[float, RGBA]]) -> Image.Image:
    width, height = size
    column = Image.new("RGBA", (1, height))
    for y in range(height):
        t = y / max(1, height - 1)
        for (p0, c0), (p1, c1) in zip(stops, stops[1:]):
            if p0 <= t <= p1:
                column.putpixel((0, y), lerp_color(c0, c1, (t - p0) / max(1e-6, p1 - p0)))
                break
    return column.resize((width, height))


def _horizontal_gradient(size: tuple[int, int], colors: list[RGBA]) -> Image.Image:
    width, height = size
    row = Image.new("RGBA", (len(colors), 1))
    for i, c in enumerate(colors):
        row.putpixel((i, 0), c)
    return row.resize((width, height), Image.BILINEAR)


RAINBOW = [parse_color(c) for c in ("violet", "indigo", "blue", "green", "yellow", "orange", "red")]


def render_text_tile(
    text: str,
    font: Font,
    fill: RGBA,
    effect: str = "none",
    decoration: str = "none",
    stroke_color: RGBA = (0, 0, 0, 255),
    shadow: bool = False,
) -> tuple[Image.Image, int]:
    """
    Render one line of text with an effect onto a transparent tile.

    Returns:
        (tile, padding); the text box starts ``padding`` pixels inside the tile
    """
    width = max(1, int(text_width(font, text)))
    height = max(1, font_height(font))
    pad = max(8, height // 2)
    size = (width + 2 * pad, height + 2 * pad)
    tile = Image.new("RGBA", size, (0, 0, 0, 0))
    origin = (pad, pad)

    if not text:
        return tile, pad

    def draw_plain(target: Image.Image, xy, color: RGBA, stroke: int = 0, stroke_fill: RGBA | None = None):
        ImageDraw.Draw(target).text(
            xy, text, font=font, fill=color, stroke_width=stroke, stroke_fill=stroke_fill
        )

    def glow(color: RGBA, radius: float):
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        draw_plain(layer, origin, color)
        tile.alpha_composite(layer.filter(ImageFilter.GaussianBlur(radius)))

    def gradient_fill(gradient: Image.Image):
        mask = Image.new("L", size, 0)
        ImageDraw.Draw(mask).text(origin, text, font=font, fill=255)
        tile.paste(gradient, (0, 0), mask)

    x, y = origin
    if shadow and effect in ("none", "preset"):
        draw_plain(tile, (x + 2, y + 2), (0, 0, 0, 128))

    if effect == "vhs":
        for dx, color in ((-2, (255, 0, 0, 180)), (0, (0, 255, 0, 180)), (2, (0, 0, 255, 180))):
            draw_plain(tile, (x + dx, y), color)
    elif effect == "3d":
        for j in range(4, 0, -1):
            draw_plain(tile, (x + j, y + j), (0, 0, 0, 128))
        draw_plain(tile, origin, fill)
    elif effect in ("neon", "glow"):
        glow(fill, 10)
        glow(fill, 20)
        draw_plain(tile, origin, fill)
    elif effect == "neon-multi":
        glow(parse_color("#00ffff"), 18)
        glow(parse_color("#ff00de"), 10)
        glow((255, 255, 255, 255), 5)
        draw_plain(tile, origin, fill)
    elif effect == "outline":
        draw_plain(tile, origin, fill, stroke=max(2, height // 20), stroke_fill=stroke_color)
    elif effect == "gradient":
        gradient_fill(_vertical_gradient(size, [(0.0, fill), (1.0, (255, 255, 255, 255))]))
    elif effect == "gold":
        gradient_fill(_vertical_gradient(size, [(0.0, parse_color("#d4af37")), (1.0, parse_color("#c5a028"))]))
    elif effect == "chrome":
        light, dark = parse_color("#ebebeb"), parse_color("#616161")
        gradient_fill(_vertical_gradient(size, [(0.0, light), (0.5, dark), (0.51, light), (1.0, light)]))
    elif effect == "rainbow":
        gradient_fill(_horizontal_gradient(size, RAINBOW))
    elif effect == "fire":
        glow(parse_color("#ff0000"), 5)
        draw_plain(tile, origin, parse_color("#ff4500"))
        draw_plain(tile, (x + 1, y - 1), parse_color("#ffcc00"))
    elif effect == "frozen":
        glow(parse_color("#03a9f4"), 12)
        draw_plain(tile, origin, (255, 255, 255, 255))
    elif effect == "emboss":
        draw_plain(tile, (x - 1, y - 1), (255, 255, 255, 178))
        draw_plain(tile, (x + 1, y + 1), (0, 0, 0, 178))
        draw_plain(tile, origin, (128, 128, 128, 128))
    elif effect == "retro":
        draw_plain(tile, (x + 4, y + 4), parse_color("#00ffff"))
        draw_plain(tile, origin, parse_color("#ff00ff"))
    elif effect == "hologram":
        glow((0, 255, 255, 128), 6)
        draw_plain(tile, origin, (0, 255, 255, 178))
    elif effect == "comic":
        draw_plain(tile, origin, parse_color("#ffcc00"), stroke=3, stroke_fill=(0, 0, 0, 255))
    elif effect == "glass":
        ImageDraw.Draw(tile).rounded_rectangle(
            (x - 10, y - pad // 2, x + width + 10, y + height + pad // 2),
            radius=8,
            fill=(255, 255, 255, 26),
            outline=(255, 255, 255, 51),
        )
        draw_plain(tile, origin, fill)
    elif effect == "mirror":
        draw_plain(tile, origin, fill)
        reflection = Image.new("RGBA", size, (0, 0, 0, 0))
        draw_plain(reflection, origin, with_alpha(fill, 0.2))
        reflection = reflection.transpose(Image.FLIP_TOP_BOTTOM).crop((0, 0, size[0], size[1] - height // 2))
        tile.alpha_composite(reflection, (0, height // 2))
    else:
        draw_plain(tile, origin, fill)

    if decoration and decoration != "none":
        draw = ImageDraw.Draw(tile)
        line_width = max(2, height // 16)
        if "line-through" in decoration:
            mid = y + height // 2
            draw.line((x, mid, x + width, mid), fill=fill, width=line_width)
        if "underline" in decoration:
            under = y + int(height * 0.95)
            draw.line((x, under, x + width, under), fill=fill, width=line_width)

    return tile, pad


def stack_tiles(
    tiles: list[tuple[Image.Image, int]], line_height: float, align: str = "center"
) -> tuple[Image.Image, int]:
    """Stack line tiles vertically, ``line_height`` apart."""
    if len(tiles) == 1:
        return tiles[0]
    pad = max(p for _, p in tiles)
    width = max(t.width for t, _ in tiles)
    step = int(round(line_height))
    first_h = tiles[0][0].height
    height = step * (len(tiles) - 1) + max(t.height for t, _ in tiles)
    out = Image.new("RGBA", (width, max(height, first_h)), (0, 0, 0, 0))
    for i, (tile, _) in enumerate(tiles):
        if align == "left":
            x = 0
        elif align == "right":
            x = width - tile.width
        else:
            x = (width - tile.width) // 2
        out.alpha_composite(tile, (x, i * step))
    return out, pad


@lru_cache(maxsize=8)
def default_font_provider(fonts: tuple[tuple[str, str], ...] = ()) -> FontProvider:
    return FontProvider({name: Path(path) for name, path in fonts})


def composite_clipped(dest: Image.Image, src: Image.Image, x: int, y: int) -> None:
    """Alpha-composite ``src`` at (x, y), clipping whatever falls outside ``dest``."""
    left, top = max(0, x), max(0, y)
    right, bottom = min(dest.width, x + src.width), min(dest.height, y + src.height)
    if right <= left or bottom <= top:
        return
    dest.alpha_composite(src, (left, top), (left - x, top - y, right - x, bottom - y))
