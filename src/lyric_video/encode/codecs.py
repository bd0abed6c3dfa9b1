"""Codec and bitrate selection.

A pure lookup from (resolution, quality tier, optional codec) to encoder
parameters. Unknown codecs are an error; nothing is silently substituted.
"""

from dataclasses import dataclass, field

from lyric_video.core.exceptions import EncoderConfigurationUnsupported

DEFAULT_CODEC = "h264"

# Canonical codec name by accepted alias
CODEC_ALIASES = {
    "h264": "h264",
    "avc": "h264",
    "h265": "h265",
    "hevc": "h265",
    "vp9": "vp9",
    "av1": "av1",
}

# CRF by quality tier: (1080p, 720p). Lower is better quality.
CRF_TABLE = {
    "low": (28, 30),
    "med": (23, 25),
    "high": (18, 20),
}

BASE_BITRATE = {"1080p": 8_000_000, "720p": 4_000_000}
QUALITY_MULTIPLIER = {"low": 0.5, "med": 1.0, "high": 1.5}

# Output dimensions by aspect ratio: (1080p, 720p)
DIMENSIONS = {
    "16:9": ((1920, 1080), (1280, 720)),
    "9:16": ((1080, 1920), (720, 1280)),
    "3:4": ((1080, 1440), (720, 960)),
    "1:1": ((1080, 1080), (720, 720)),
    "1:2": ((1080, 2160), (720, 1440)),
    "2:1": ((2160, 1080), (1440, 720)),
    "2:3": ((1080, 1620), (720, 1080)),
    "3:2": ((1620, 1080), (1080, 720)),
}


@dataclass(frozen=True)
class CodecSpec:
    """Encoder parameters for one export."""

    codec: str
    encoder: str
    crf: int
    bitrate: int
    args: tuple[str, ...] = field(default_factory=tuple)
    container: str = "mp4"
    extension: str = "mp4"
    audio_encoder: str = "aac"
    pix_fmt: str = "yuv420p"

    @property
    def mime_type(self) -> str:
        return "video/webm" if self.container == "webm" else "video/mp4"


def canonical_codec(codec: str | None) -> str:
    """Resolve an alias to its canonical codec name."""
    if codec is None or codec == "auto":
        return DEFAULT_CODEC
    name = CODEC_ALIASES.get(codec.lower().strip())
    if name is None:
        raise EncoderConfigurationUnsupported(
            f"Unsupported codec '{codec}'. Supported: {', '.join(sorted(set(CODEC_ALIASES.values())))}",
            codec=codec,
        )
    return name


def dimensions_for(resolution: str, aspect_ratio: str) -> tuple[int, int]:
    """Output (width, height) for a resolution class and aspect ratio."""
    if aspect_ratio not in DIMENSIONS:
        raise EncoderConfigurationUnsupported(f"Unsupported aspect ratio '{aspect_ratio}'")
    if resolution not in BASE_BITRATE:
        raise EncoderConfigurationUnsupported(f"Unsupported resolution '{resolution}'")
    full, small = DIMENSIONS[aspect_ratio]
    return full if resolution == "1080p" else small


def select_codec(resolution: str, quality: str, codec: str | None = None) -> CodecSpec:
    """
    Look up encoder parameters.

    Args:
        resolution: "720p" or "1080p"
        quality: "low", "med" or "high"
        codec: Optional explicit codec name (h264, h265, vp9, av1)

    Returns:
        CodecSpec for the request

    Raises:
        EncoderConfigurationUnsupported: unknown codec, quality or resolution
    """
    if quality not in CRF_TABLE:
        raise EncoderConfigurationUnsupported(f"Unsupported quality tier '{quality}'")
    if resolution not in BASE_BITRATE:
        raise EncoderConfigurationUnsupported(f"Unsupported resolution '{resolution}'")

    name = canonical_codec(codec)
    is_1080p = resolution == "1080p"
    crf = CRF_TABLE[quality][0 if is_1080p else 1]
    bitrate = int(BASE_BITRATE[resolution] * QUALITY_MULTIPLIER[quality])

    if name == "h265":
        return CodecSpec(
            codec=name,
            encoder="libx265",
            crf=crf,
            bitrate=bitrate,
            args=("-crf", str(crf), "-preset", "medium", "-tag:v", "hvc1"),
        )
    if name == "vp9":
        return CodecSpec(
            codec=name,
            encoder="libvpx-vp9",
            crf=crf,
            bitrate=bitrate,
            args=("-crf", str(crf), "-b:v", "0", "-deadline", "good", "-cpu-used", "2"),
            container="webm",
            extension="webm",
            audio_encoder="libopus",
        )
    if name == "av1":
        return CodecSpec(
            codec=name,
            encoder="libaom-av1",
            crf=crf + 10,
            bitrate=bitrate,
            args=("-crf", str(crf + 10), "-b:v", "0", "-cpu-used", "4", "-strict", "experimental"),
        )
    return CodecSpec(
        codec=name,
        encoder="libx264",
        crf=crf,
        bitrate=bitrate,
        args=("-crf", str(crf), "-preset", "medium", "-profile:v", "high", "-level", "4.2"),
    )


def live_bitrate(resolution: str, quality: str, fps: int) -> int:
    """Bitrate for the live capture path (60 fps and up gets 1.5x)."""
    base = BASE_BITRATE.get(resolution, BASE_BITRATE["1080p"])
    fps_multiplier = 1.5 if fps > 30 else 1.0
    quality_multiplier = {"low": 0.5, "med": 1.0, "high": 2.0}.get(quality, 1.0)
    return int(base * fps_multiplier * quality_multiplier)
