"""Media handles, audio decoding and preloading."""

from lyric_video.media.audio import AudioMixGraph, DecodedAudio, decode_audio
from lyric_video.media.loader import MediaLoader
from lyric_video.media.sources import AudioSource, ImageSource, MediaHandles, TimedMedia, VideoSource

__all__ = [
    "DecodedAudio",
    "AudioMixGraph",
    "decode_audio",
    "MediaLoader",
    "MediaHandles",
    "ImageSource",
    "TimedMedia",
    "VideoSource",
    "AudioSource",
]
