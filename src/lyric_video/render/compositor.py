"""Frame compositor shared by preview, live capture and both export backends.

``render_frame`` is a pure function of its explicit arguments: it never reads
the wall clock, keeps no per-call state that changes its output, and derives
every "random" motion from a hash of the timestamp.
"""

import math
import weakref
from dataclasses import dataclass

import numpy as np
from loguru import logger
from PIL import Image, ImageDraw, ImageFilter, ImageOps

from lyric_video.media.sources import MediaHandles
from lyric_video.models.lyrics import LyricLine, active_line_index, effective_end, upcoming_line_index
from lyric_video.models.render_config import RenderConfig, VideoPreset
from lyric_video.models.slide import Slide, active_visual_slide, previous_visual_slide
from lyric_video.models.track import AudioMetadata
from lyric_video.render.karaoke import highlight_color, is_karaoke, render_karaoke_tile
from lyric_video.render.presets import PresetLayout, layout_for
from lyric_video.render.text import (
    Font,
    FontProvider,
    apply_case,
    composite_clipped,
    default_font_provider,
    render_text_tile,
    stack_tiles,
    wrap_text,
)
from lyric_video.utils.color import RGBA, darken, parse_color, with_alpha

INTRO_WINDOW = 5.0
OUTRO_WINDOW = 5.0
TRANSITION_DURATION = 0.5
WRAP_RATIO = 0.9
SIDE_MARGIN = 60
DEFAULT_BLUR_RADIUS = 12
SUBTITLE_BOTTOM = 120
TYPEWRITER_CPS = 30

BLACK: RGBA = (0, 0, 0, 255)
CLEAR: RGBA = (0, 0, 0, 0)

# id(source) -> (ref to source, target size, cover-fitted copy); PIL images are unhashable
_fit_cache: dict[int, tuple[weakref.ref, tuple[int, int], Image.Image]] = {}


@dataclass
class Transform:
    """Per-line motion applied to a rendered text tile."""

    alpha: float = 1.0
    dx: float = 0.0
    dy: float = 0.0
    sx: float = 1.0
    sy: float = 1.0
    rotation: float = 0.0
    blur: float = 0.0

    def combine(self, other: "Transform") -> "Transform":
        return Transform(
            alpha=self.alpha * other.alpha,
            dx=self.dx + other.dx,
            dy=self.dy + other.dy,
            sx=self.sx * other.sx,
            sy=self.sy * other.sy,
            rotation=self.rotation + other.rotation,
            blur=max(self.blur, other.blur),
        )


@dataclass(frozen=True)
class _Frame:
    time: float
    width: int
    height: int
    scale: float
    portrait: bool
    preset: VideoPreset
    layout: PresetLayout
    config: RenderConfig
    metadata: AudioMetadata
    media: MediaHandles
    fonts: FontProvider
    family: str | None


def output_scale(width: int, height: int) -> float:
    """Size factor relative to the 1080p layout."""
    return 1.0 if min(width, height) >= 1080 else 0.666


def jitter(time: float, salt: int = 0) -> float:
    """Deterministic pseudo-random value in [-0.5, 0.5) derived from ``time``."""
    value = math.sin(time * 12.9898 + salt * 78.233) * 43758.5453
    return value - math.floor(value) - 0.5


def _ease_out_back(t: float) -> float:
    c1 = 1.70158
    c3 = c1 + 1
    return 1 + c3 * (t - 1) ** 3 + c1 * (t - 1) ** 2


def _ease_out_elastic(t: float) -> float:
    if t <= 0:
        return 0.0
    if t >= 1:
        return 1.0
    c4 = (2 * math.pi) / 3
    return 2 ** (-10 * t) * math.sin((t * 10 - 0.75) * c4) + 1


def transition_transform(effect: str, time: float, start: float, end: float | None) -> Transform:
    """Entrance/exit motion of the active line."""
    tr = Transform()
    if effect == "none":
        return tr

    elapsed = time - start
    remaining = end - time if end is not None else TRANSITION_DURATION
    if elapsed < TRANSITION_DURATION:
        p = max(0.0, elapsed / TRANSITION_DURATION)
    elif end is not None and remaining < TRANSITION_DURATION:
        p = max(0.0, remaining / TRANSITION_DURATION)
    else:
        return tr

    entering = elapsed < TRANSITION_DURATION
    tr.alpha = min(1.0, p * 2)

    if effect == "slide":
        tr.dy = (1 - p) * (30 if entering else -30)
    elif effect == "zoom":
        tr.sx = tr.sy = 0.5 + p * 0.5
    elif effect == "blur":
        tr.blur = (1 - p) * 10
    elif effect == "float":
        tr.dy = (1 - p) * (50 if entering else -50)
    elif effect == "drop":
        tr.dy = (1 - _ease_out_back(p)) * -200
        tr.alpha = p
    elif effect == "flip":
        tr.sy = max(0.01, p)
    elif effect == "rotate-in":
        tr.rotation = (1 - p) * -math.pi / 2
        tr.alpha = p
    elif effect == "spiral":
        tr.sx = tr.sy = max(0.01, p)
        tr.rotation = (1 - p) * math.pi * 2
        tr.alpha = p
    elif effect == "shatter":
        tr.sx = tr.sy = 3 - 2 * p
        tr.blur = (1 - p) * 20
        tr.alpha = p
    elif effect == "lightspeed":
        tr.dx = (1 - p) * 300
        tr.alpha = p
    elif effect == "roll":
        tr.dx = (1 - p) * -300
        tr.rotation = (1 - p) * -math.pi
        tr.alpha = p
    elif effect == "elastic":
        tr.sx = tr.sy = max(0.01, _ease_out_elastic(p))
        tr.alpha = p
    return tr


def animation_transform(animation: str, time: float, scale: float) -> Transform:
    """Continuous motion of the active line."""
    tr = Transform()
    if animation == "bounce":
        tr.dy = math.sin(time * 6) * 15 * scale
    elif animation == "pulse":
        tr.sx = tr.sy = 1 + math.sin(time * 4) * 0.08
    elif animation == "wave":
        tr.dy = math.sin(time * 4) * 20 * scale
        tr.rotation = math.sin(time * 4) * 0.05
    elif animation == "glitch":
        if math.sin(time * 10) > 0.8:
            tr.dx = jitter(time, 1) * 15 * scale
            tr.dy = jitter(time, 2) * 15 * scale
    elif animation == "shake":
        tr.dx = jitter(time, 3) * 5 * scale
        tr.dy = jitter(time, 4) * 5 * scale
    elif animation == "wobble":
        tr.rotation = math.sin(time * 5) * 0.05
        tr.sx = tr.sy = 1 + math.sin(time * 3) * 0.05
    elif animation == "breathe":
        tr.sx = tr.sy = 1 + math.sin(time * 2) * 0.03
    elif animation == "rotate":
        tr.rotation = math.sin(time * 2) * 0.05
    elif animation == "sway":
        tr.rotation = math.sin(time * 2) * 0.08
    elif animation == "flicker":
        tr.alpha = 0.8 + (jitter(time, 5) + 0.5) * 0.2
    elif animation == "jello":
        tr.sx = 1 + math.sin(time * 6) * 0.1
        tr.sy = 1 - math.sin(time * 6) * 0.1
    elif animation == "spin":
        tr.rotation = (time % 2) * math.pi
    elif animation == "heartbeat":
        beat = (time * 1.5) % 1
        if beat < 0.1 or 0.3 < beat < 0.4:
            tr.sx = tr.sy = 1.1
    elif animation == "tada":
        beat = (time * 1.5) % 1
        if beat < 0.1:
            tr.sx = tr.sy = 0.9
            tr.rotation = -0.05
        elif beat < 0.2:
            tr.sx = tr.sy = 1.1
            tr.rotation = 0.05
    elif animation == "swing":
        tr.rotation = math.sin(time * 3) * 0.1
    return tr


def apply_transform(tile: Image.Image, tr: Transform) -> Image.Image:
    """Blur, scale about the centre, rotate and fade a tile."""
    if tr.blur > 0:
        tile = tile.filter(ImageFilter.GaussianBlur(tr.blur))
    if tr.sx != 1 or tr.sy != 1:
        tile = tile.resize(
            (max(1, round(tile.width * abs(tr.sx))), max(1, round(tile.height * abs(tr.sy)))),
            Image.BILINEAR,
        )
    if tr.rotation:
        # Positive rotation turns clockwise on screen
        tile = tile.rotate(-math.degrees(tr.rotation), resample=Image.BICUBIC, expand=True)
    if tr.alpha < 1:
        alpha = tile.getchannel("A").point(lambda v: int(v * max(0.0, tr.alpha)))
        tile = tile.copy()
        tile.putalpha(alpha)
    return tile


def _italic(tile: Image.Image, slant: float = 0.2) -> Image.Image:
    half = tile.height / 2
    return tile.transform(tile.size, Image.AFFINE, (1, slant, -slant * half, 0, 1, 0), Image.BICUBIC)


def _media_frame(media: MediaHandles, key: str) -> Image.Image | None:
    handle = media.get(key)
    if handle is None:
        return None
    try:
        return handle.frame()
    except Exception as e:
        # A broken source renders as absent
        logger.warning(f"Media {key} failed to produce a frame: {e}")
        return None


def _cover_fit(image: Image.Image | None, size: tuple[int, int]) -> Image.Image | None:
    """Scale to cover ``size`` and centre-crop."""
    if image is None or image.width == 0 or image.height == 0:
        return None
    key = id(image)
    cached = _fit_cache.get(key)
    if cached is not None and cached[0]() is image and cached[1] == size:
        return cached[2]
    fitted = ImageOps.fit(image.convert("RGBA"), size, method=Image.BILINEAR, centering=(0.5, 0.5))
    _fit_cache[key] = (weakref.ref(image, lambda _, k=key: _fit_cache.pop(k, None)), size, fitted)
    return fitted


def _gradient(size: tuple[int, int], stops: list[tuple[float, RGBA]], diagonal: bool) -> Image.Image:
    """Linear gradient, top to bottom or along the top-left/bottom-right diagonal."""
    width, height = size
    if diagonal:
        xs = np.arange(width, dtype=np.float64)[None, :]
        ys = np.arange(height, dtype=np.float64)[:, None]
        t = (xs * width + ys * height) / float(width * width + height * height)
    else:
        t = np.broadcast_to(np.linspace(0.0, 1.0, height)[:, None], (height, width))

    positions = [p for p, _ in stops]
    channels = [np.interp(t, positions, [c[i] for _, c in stops]) for i in range(4)]
    pixels = np.dstack(channels).round().astype(np.uint8)
    return Image.fromarray(pixels, "RGBA")


def _draw_background(canvas: Image.Image, frame: _Frame, slides: list[Slide], blur: bool) -> None:
    config = frame.config
    size = (frame.width, frame.height)
    source = config.background_source

    if source == "gradient":
        start, end = (parse_color(c, BLACK) for c in config.background_gradient)
        canvas.alpha_composite(_gradient(size, [(0.0, start), (1.0, end)], diagonal=False))
    elif source == "smart-gradient":
        base = parse_color(config.background_color, BLACK)
        canvas.alpha_composite(
            _gradient(size, [(0.0, base), (0.5, darken(base, 0.6)), (1.0, BLACK)], diagonal=True)
        )

    layer = None
    if source == "timeline":
        slide = active_visual_slide(slides, frame.time, config.layer_visibility.visual)
        if slide is not None:
            layer = _slide_layer(frame, slides, slide)
        else:
            layer = _cover_layer(frame)
    elif source == "custom":
        layer = _cover_layer(frame)
    elif source == "image":
        layer = _cover_fit(_media_frame(frame.media, MediaHandles.BACKGROUND_IMAGE), size)

    if layer is None:
        return

    radius = config.background_blur_strength or (DEFAULT_BLUR_RADIUS if blur else 0)
    if radius > 0:
        layer = layer.filter(ImageFilter.GaussianBlur(radius))
    canvas.alpha_composite(layer)


def _cover_layer(frame: _Frame) -> Image.Image | None:
    if not frame.metadata.cover_source:
        return None
    size = (frame.width, frame.height)
    if frame.metadata.has_video_background:
        fitted = _cover_fit(_media_frame(frame.media, MediaHandles.BACKGROUND), size)
        if fitted is not None:
            return fitted
    return _cover_fit(_media_frame(frame.media, MediaHandles.COVER), size)


def _slide_layer(frame: _Frame, slides: list[Slide], slide: Slide) -> Image.Image | None:
    config = frame.config
    size = (frame.width, frame.height)
    current = _cover_fit(_media_frame(frame.media, MediaHandles.slide_key(slide.id)), size)

    elapsed = frame.time - slide.start_time
    if config.visual_transition_type == "none" or elapsed >= config.visual_transition_duration:
        return current

    progress = max(0.0, elapsed / config.visual_transition_duration)
    incoming = current if current is not None else Image.new("RGBA", size, CLEAR)

    if config.visual_transition_type == "fade-to-black":
        return Image.blend(Image.new("RGBA", size, BLACK), incoming, progress)

    previous = previous_visual_slide(slides, slide, config.layer_visibility.visual)
    outgoing = None
    if previous is not None:
        outgoing = _cover_fit(_media_frame(frame.media, MediaHandles.slide_key(previous.id)), size)
    if outgoing is None:
        outgoing = Image.new("RGBA", size, CLEAR)
    return Image.blend(outgoing, incoming, progress)


def _dim(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    alpha = 0.2 if config.background_source in ("color", "gradient") else 0.5
    canvas.alpha_composite(Image.new("RGBA", canvas.size, with_alpha(BLACK, alpha)))

    if config.enable_gradient_overlay:
        band = max(1, int(frame.height * 0.4))
        overlay = _gradient((frame.width, band), [(0.0, CLEAR), (1.0, with_alpha(BLACK, 0.7))], diagonal=False)
        canvas.alpha_composite(overlay, (0, frame.height - band))


def title_card_text(
    lyrics: list[LyricLine],
    metadata: AudioMetadata,
    config: RenderConfig,
    time: float,
    duration: float,
    is_first_track: bool,
    is_last_track: bool,
) -> str | None:
    """Text of the intro/outro title card shown at ``time``, if any."""
    if not config.show_intro or active_line_index(lyrics, time) != -1:
        return None

    auto_text = f"{metadata.title}\n{metadata.artist}"
    before_first = not lyrics or time < lyrics[0].start_time
    if before_first and time < INTRO_WINDOW:
        if config.intro_mode == "manual" and config.intro_text and is_first_track:
            return config.intro_text
        return auto_text

    if (
        is_last_track
        and lyrics
        and duration > 0
        and time >= effective_end(lyrics, len(lyrics) - 1)
        and time >= duration - OUTRO_WINDOW
    ):
        return auto_text
    return None


def _display_window(mode: str, layout: PresetLayout, line_count: int) -> tuple[int, int]:
    if mode == "active-only":
        return 0, 0
    if mode == "next-only":
        return 0, 1
    if mode == "previous-next":
        return -1, 1
    if mode == "all":
        return -line_count, line_count
    return -layout.window, layout.window


def _line_tile(
    text: str,
    font: Font,
    fill: RGBA,
    effect: str,
    decoration: str,
    shadow: bool,
    wrap_width: float | None,
    line_height: float,
    align: str,
) -> tuple[Image.Image, int]:
    rows = wrap_text(text, font, wrap_width) if wrap_width else text.split("\n")
    tiles = [render_text_tile(row, font, fill, effect, decoration, shadow=shadow) for row in rows or [""]]
    return stack_tiles(tiles, line_height, align)


def _place(canvas: Image.Image, tile: Image.Image, pad: int, x: float, y: float, align: str, tr: Transform) -> None:
    """Composite a text tile so its anchor lands on (x, y)."""
    if align == "left":
        anchor_x = pad
    elif align == "right":
        anchor_x = tile.width - pad
    else:
        anchor_x = tile.width / 2
    offset_x = (tile.width / 2 - anchor_x) * tr.sx

    moved = apply_transform(tile, tr)
    cx = x + offset_x
    composite_clipped(canvas, moved, int(round(cx - moved.width / 2)), int(round(y - moved.height / 2)))


def _draw_lyrics(
    canvas: Image.Image,
    frame: _Frame,
    lyrics: list[LyricLine],
    duration: float,
    is_first_track: bool,
    is_last_track: bool,
    font_scale: float,
) -> None:
    config = frame.config
    layout = frame.layout
    t = frame.time

    active = active_line_index(lyrics, t)
    virtual = active if active != -1 else upcoming_line_index(lyrics, t)
    card = title_card_text(lyrics, frame.metadata, config, t, duration, is_first_track, is_last_track)
    show_all = config.lyric_display_mode == "all" and bool(lyrics)

    if not config.show_lyrics or (active == -1 and card is None and not show_all):
        return

    outro = card is not None and bool(lyrics) and t >= lyrics[0].start_time
    if outro:
        virtual = len(lyrics) - 1

    size_factor = frame.scale * font_scale * config.font_size_scale
    base_size = layout.pick(layout.font_size, frame.portrait) * size_factor
    secondary_size = layout.pick(layout.secondary_font_size, frame.portrait) * size_factor
    spacing = layout.pick(layout.line_spacing, frame.portrait) * size_factor * config.lyric_line_height
    center_y = frame.height * {"top": 0.25, "center": 0.5, "bottom": 0.75}[config.content_position]
    align = config.text_align or layout.align
    wrap_width = frame.width * WRAP_RATIO
    is_custom = frame.preset == VideoPreset.CUSTOM

    active_weight = config.font_weight if is_custom else layout.active_weight
    active_font = frame.fonts.get(frame.family, base_size, layout.font_hint, active_weight)
    secondary_font = frame.fonts.get(frame.family, secondary_size, layout.font_hint, "normal")

    def display(text: str, current: bool) -> str:
        text = apply_case(text, config.text_case)
        return text.upper() if current and layout.uppercase else text

    shift = 0.0
    if layout.wrap_active:
        focus = card if card is not None else lyrics[active if active != -1 else virtual].text
        rows = wrap_text(display(focus, True), active_font, wrap_width)
        if len(rows) > 1:
            shift = (len(rows) - 1) * (base_size * 1.2) / 2

    base_color = parse_color(config.font_color)
    decoration = config.text_decoration if is_custom else "none"
    italic = is_custom and config.font_style == "italic"

    start_i, end_i = _display_window(config.lyric_display_mode, layout, len(lyrics))
    for i in range(start_i, end_i + 1):
        line: LyricLine | None = None
        if i == 0 and card is not None:
            text = card
            current = True
            line_start = duration - OUTRO_WINDOW if outro else 0.0
            line_end = None
        else:
            idx = virtual + i
            if idx < 0 or idx >= len(lyrics):
                continue
            line = lyrics[idx]
            text = line.text
            current = idx == active
            line_start = line.start_time
            line_end = line.end_time

        fill = base_color if current else with_alpha(base_color, 0.5 * base_color[3] / 255)
        font = active_font if current else secondary_font
        styled = current or config.lyric_style_target == "all"
        effect = config.text_effect if styled else "none"
        if effect == "preset":
            effect = "none"

        tr = Transform()
        if current:
            tr = transition_transform(config.transition_effect, t, line_start, line_end)
            tr = tr.combine(animation_transform(config.text_animation, t, frame.scale))

        text = display(text, current)
        if current and config.text_animation == "typewriter":
            text = text[: max(0, math.floor((t - line_start) * TYPEWRITER_CPS))]

        highlight = config.highlight_effect if current and card is None else "none"
        if highlight == "color":
            fill = highlight_color(highlight, config)
        elif highlight == "glow":
            effect = "glow"
            fill = highlight_color(highlight, config)
        elif highlight == "scale":
            tr = tr.combine(Transform(sx=1.1, sy=1.1))

        if line is not None and line.has_words and is_karaoke(highlight):
            words = [w.model_copy(update={"text": display(w.text, current)}) for w in line.words]
            tile, pad = render_karaoke_tile(
                words, t, effective_end(lyrics, virtual + i), font, fill, highlight, config
            )
            if tile.width - 2 * pad > wrap_width:
                factor = wrap_width / (tile.width - 2 * pad)
                tr = tr.combine(Transform(sx=factor, sy=factor))
        else:
            tile, pad = _line_tile(
                text,
                font,
                fill,
                effect,
                decoration,
                shadow=layout.shadow and styled,
                wrap_width=wrap_width if current and layout.wrap_active else None,
                line_height=base_size * 1.2 if current else secondary_size * 1.2,
                align=align,
            )

        if highlight == "background":
            backdrop = Image.new("RGBA", tile.size, CLEAR)
            ImageDraw.Draw(backdrop).rounded_rectangle(
                (pad // 2, pad // 2, tile.width - pad // 2, tile.height - pad // 2),
                radius=max(4, pad // 2),
                fill=parse_color(config.highlight_background, (255, 255, 255, 51)),
            )
            backdrop.alpha_composite(tile)
            tile = backdrop

        if italic:
            tile = _italic(tile)

        if layout.pin_subtitle and i == 0 and config.lyric_display_mode != "all":
            y = frame.height - SUBTITLE_BOTTOM * frame.scale
        else:
            y = center_y + i * spacing
        if not is_custom:
            if i < 0:
                y -= shift
            elif i > 0:
                y += shift
        y += tr.dy

        if align == "left":
            x = SIDE_MARGIN * frame.scale
        elif align == "right":
            x = frame.width - SIDE_MARGIN * frame.scale
        else:
            x = frame.width / 2
        x += tr.dx

        _place(canvas, tile, pad, x, y, align, tr)


def _draw_text(
    canvas: Image.Image, text: str, font: Font, fill: RGBA, xy: tuple[float, float], anchor: str
) -> None:
    if text:
        ImageDraw.Draw(canvas).text(xy, text, font=font, fill=fill, anchor=anchor)


def _paste_cover(
    canvas: Image.Image, cover: Image.Image | None, x: float, y: float, size: float, radius: float, circle: bool
) -> bool:
    side = max(1, int(round(size)))
    mask = Image.new("L", (side, side), 0)
    if circle:
        ImageDraw.Draw(mask).ellipse((0, 0, side - 1, side - 1), fill=255)
    else:
        ImageDraw.Draw(mask).rounded_rectangle((0, 0, side - 1, side - 1), radius=int(radius), fill=255)

    if cover is None:
        tile = Image.new("RGBA", (side, side), parse_color("#27272a"))
    else:
        tile = ImageOps.fit(cover.convert("RGBA"), (side, side), method=Image.BILINEAR)
    tile.putalpha(Image.composite(tile.getchannel("A"), mask, mask))
    composite_clipped(canvas, tile, int(round(x)), int(round(y)))
    return True


def _info_cover(frame: _Frame) -> Image.Image | None:
    if not frame.metadata.cover_source:
        return None
    if frame.metadata.has_video_background:
        video_frame = _media_frame(frame.media, MediaHandles.BACKGROUND)
        if video_frame is not None:
            return video_frame
    return _media_frame(frame.media, MediaHandles.COVER)


def _draw_info(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    layout = frame.layout
    show_info = config.show_title or config.show_artist
    if layout.info_layout == "none" or not (show_info or config.show_cover):
        return

    if layout.info_layout == "custom":
        _draw_info_custom(canvas, frame)
    elif layout.info_layout == "centered_bottom":
        _draw_info_centered(canvas, frame)
    else:
        _draw_info_classic(canvas, frame)


def _draw_info_custom(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    meta = frame.metadata
    scale = frame.scale * config.info_size_scale
    style = config.info_style
    pos = config.info_position
    margin = 40 * frame.scale * config.info_margin_scale

    if "left" in pos:
        x, align = margin, "l"
    elif "right" in pos:
        x, align = frame.width - margin, "r"
    else:
        x, align = frame.width / 2, "m"
    top = "top" in pos
    y = margin if top else frame.height - margin

    cover_size = 0 if style in ("minimal", "modern") else 100 * scale
    cover = _info_cover(frame) if config.show_cover and cover_size > 0 else None
    has_cover = cover is not None
    radius = 0 if style == "box" else 12 * scale
    circle = style == "circle_art"

    title_size = (20 if style == "minimal" else 40 if style in ("modern", "modern_art") else 28) * scale
    artist_size = (14 if style == "minimal" else 24 if style in ("modern", "modern_art") else 18) * scale
    title_font = frame.fonts.get(frame.family, title_size, frame.layout.font_hint, "bold")
    artist_font = frame.fonts.get(frame.family, artist_size, frame.layout.font_hint, "normal")
    gap = 20 * scale

    main_color = parse_color(config.info_font_color or config.font_color)
    if style in ("modern", "modern_art"):
        artist_color = main_color
    else:
        artist_color = parse_color(config.info_font_color or config.font_color, parse_color("#d4d4d8"))

    if align == "m":
        cur_y = y
        if top:
            if has_cover:
                _paste_cover(canvas, cover, x - cover_size / 2, cur_y, cover_size, radius, circle)
                cur_y += cover_size + gap
            if config.show_title:
                _draw_text(canvas, meta.title, title_font, main_color, (x, cur_y), "mt")
                cur_y += title_size + 5 * scale
            if config.show_artist:
                _draw_text(canvas, meta.artist, artist_font, artist_color, (x, cur_y), "mt")
        else:
            if config.show_artist:
                _draw_text(canvas, meta.artist, artist_font, artist_color, (x, cur_y), "md")
                cur_y -= artist_size + 5 * scale
            if config.show_title:
                _draw_text(canvas, meta.title, title_font, main_color, (x, cur_y), "md")
                cur_y -= title_size + gap
            if has_cover:
                cur_y -= cover_size
                _paste_cover(canvas, cover, x - cover_size / 2, cur_y, cover_size, radius, circle)
        return

    is_right = align == "r"
    text_height = (title_size if config.show_title else 0) + (
        artist_size + 5 * scale if config.show_artist else 0
    )
    block_height = max(cover_size if has_cover else 0, text_height)
    start_y = y if top else y - block_height

    cur_x = x
    if has_cover:
        image_x = x - cover_size if is_right else x
        _paste_cover(canvas, cover, image_x, start_y, cover_size, radius, circle)
        cur_x = cur_x - (cover_size + gap) if is_right else cur_x + cover_size + gap

    text_y = start_y + (block_height - text_height) / 2
    anchor = "rt" if is_right else "lt"
    if config.show_title:
        _draw_text(canvas, meta.title, title_font, main_color, (cur_x, text_y), anchor)
        text_y += title_size + 5 * scale
    if config.show_artist:
        _draw_text(canvas, meta.artist, artist_font, artist_color, (cur_x, text_y), anchor)


def _draw_info_centered(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    if not (config.show_title or config.show_artist):
        return
    scale = frame.scale * config.info_size_scale
    bottom = frame.layout.info_bottom_margin * frame.scale
    cx = frame.width / 2

    if config.show_title:
        title = frame.metadata.title.upper() if frame.layout.info_title_upper else frame.metadata.title
        font = frame.fonts.get(frame.family, 20 * scale, frame.layout.font_hint, "bold")
        _draw_text(canvas, title, font, (255, 255, 255, 255), (cx, frame.height - bottom - 30 * frame.scale), "mm")
    if config.show_artist:
        font = frame.fonts.get(frame.family, 16 * scale, frame.layout.font_hint, "normal")
        _draw_text(canvas, frame.metadata.artist, font, parse_color("#d4d4d8"), (cx, frame.height - bottom), "mm")


def _draw_info_classic(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    meta = frame.metadata
    scale = frame.scale
    size_scale = config.info_size_scale
    show_info = config.show_title or config.show_artist
    margin = 40 * scale * config.info_margin_scale
    square = frame.width == frame.height
    thumb = (110 if square else 150 if frame.portrait else 100) * scale * size_scale
    if not frame.portrait:
        thumb = 100 * scale * size_scale
    cover = _info_cover(frame)
    white, grey = (255, 255, 255, 255), parse_color("#d4d4d8")

    if frame.portrait:
        center_x = frame.width / 2
        image_y = margin * (1.5 if square else 3)
        if config.show_cover:
            _paste_cover(canvas, cover, center_x - thumb / 2, image_y, thumb, 12 * scale, False)
        if show_info:
            title_y = image_y + (thumb + 25 * scale if config.show_cover else 0)
            title_size = (26 if square else 36) * scale * size_scale
            if config.show_title:
                font = frame.fonts.get(frame.family, title_size, frame.layout.font_hint, "bold")
                _draw_text(canvas, meta.title, font, white, (center_x, title_y), "mt")
            if config.show_artist:
                size = (18 if square else 24) * scale * size_scale
                font = frame.fonts.get(frame.family, size, frame.layout.font_hint)
                offset = (30 if square else 40) * scale * size_scale if config.show_title else 0
                _draw_text(canvas, meta.artist, font, grey, (center_x, title_y + offset), "mt")
        return

    x = y = margin
    if config.show_cover:
        _paste_cover(canvas, cover, x, y, thumb, 12 * scale, False)
    if show_info:
        title_size = 28 * scale * size_scale
        title_x = x + (thumb + 25 * scale if config.show_cover else 0)
        title_y = y + thumb / 2 - title_size
        if config.show_title:
            font = frame.fonts.get(frame.family, title_size, frame.layout.font_hint, "bold")
            _draw_text(canvas, meta.title, font, white, (title_x, title_y), "lt")
        if config.show_artist:
            font = frame.fonts.get(frame.family, 18 * scale * size_scale, frame.layout.font_hint)
            offset = title_size + 5 * scale if config.show_title else 0
            _draw_text(canvas, meta.artist, font, grey, (title_x, title_y + offset), "lt")


def _draw_channel_info(canvas: Image.Image, frame: _Frame) -> None:
    config = frame.config
    if not config.show_channel_info:
        return
    image = _media_frame(frame.media, MediaHandles.CHANNEL)
    text = config.channel_info_text
    if image is None and not text:
        return

    scale = frame.scale * config.channel_info_size_scale
    margin = 40 * frame.scale
    logo_size = 60 * scale
    font = frame.fonts.get(frame.family, 24 * scale, frame.layout.font_hint, "bold")

    parts = []
    if image is not None:
        logo = image.convert("RGBA")
        ratio = logo_size / max(1, logo.height)
        parts.append(logo.resize((max(1, int(logo.width * ratio)), max(1, int(logo_size))), Image.BILINEAR))
    if text:
        tile, pad = render_text_tile(text, font, (255, 255, 255, 255), shadow=True)
        parts.append(tile.crop((pad // 2, pad // 2, tile.width - pad // 2, tile.height - pad // 2)))

    gap = int(10 * scale)
    width = sum(p.width for p in parts) + gap * (len(parts) - 1)
    height = max(p.height for p in parts)
    badge = Image.new("RGBA", (width, height), CLEAR)
    cursor = 0
    for part in parts:
        badge.alpha_composite(part, (cursor, (height - part.height) // 2))
        cursor += part.width + gap
    badge = apply_transform(badge, Transform(alpha=0.8))

    pos = config.channel_info_position
    if "left" in pos:
        x = margin
    elif "right" in pos:
        x = frame.width - margin - width
    else:
        x = (frame.width - width) / 2
    y = margin if "top" in pos else frame.height - margin - height
    composite_clipped(canvas, badge, int(round(x)), int(round(y)))


def render_frame(
    time: float,
    width: int,
    height: int,
    lyrics: list[LyricLine],
    metadata: AudioMetadata | None,
    slides: list[Slide],
    media: MediaHandles | None,
    preset: VideoPreset | str,
    config: RenderConfig | None,
    *,
    font_name: str | None = None,
    font_scale: float = 1.0,
    blur: bool = False,
    duration: float = 0.0,
    is_first_track: bool = True,
    is_last_track: bool = True,
    surface: Image.Image | None = None,
    fonts: FontProvider | None = None,
) -> Image.Image:
    """
    Compute the pixels of one frame.

    Args:
        time: Timeline position in seconds (any order, any value)
        width: Output width in pixels
        height: Output height in pixels
        lyrics: Offset-adjusted lyric lines
        metadata: Song title/artist/cover information
        slides: Timeline slides (audio slides are ignored here)
        media: Loaded media handles; absent keys render as absent
        preset: Layout preset
        config: Render configuration
        font_name: Font family override
        font_scale: Multiplier applied to every lyric size
        blur: Blur the background when no explicit strength is configured
        duration: Track duration, used for the outro card
        is_first_track: Whether this is the first track of a playlist
        is_last_track: Whether this is the last track of a playlist
        surface: RGB image to draw into instead of allocating a new one
        fonts: Font provider (defaults to one without configured files)

    Returns:
        RGB image of size (width, height)
    """
    config = config or RenderConfig()
    metadata = metadata or AudioMetadata()
    media = media if media is not None else MediaHandles()
    try:
        preset = VideoPreset(preset)
    except ValueError:
        preset = VideoPreset.DEFAULT
    layout = layout_for(preset)

    if config.font_family and config.font_family != "sans-serif":
        family = config.font_family
    else:
        family = font_name

    frame = _Frame(
        time=time,
        width=width,
        height=height,
        scale=output_scale(width, height),
        portrait=width <= height,
        preset=preset,
        layout=layout,
        config=config,
        metadata=metadata,
        media=media,
        fonts=fonts or default_font_provider(),
        family=family,
    )

    canvas = Image.new("RGBA", (width, height), parse_color(config.background_color, BLACK))
    _draw_background(canvas, frame, slides, blur)

    if not layout.background_only:
        _dim(canvas, frame)
        _draw_lyrics(canvas, frame, lyrics, duration, is_first_track, is_last_track, font_scale)
        _draw_info(canvas, frame)

    _draw_channel_info(canvas, frame)

    rgb = canvas.convert("RGB")
    if surface is not None:
        surface.paste(rgb)
        return surface
    return rgb
