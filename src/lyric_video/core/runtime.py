"""Lazily initialised encoder runtime handle."""

import asyncio

from loguru import logger

from lyric_video.core.config import Settings
from lyric_video.core.exceptions import EncoderConfigurationUnsupported
from lyric_video.encode.codecs import CodecSpec
from lyric_video.utils.ffmpeg import FFmpegWrapper


class EncoderRuntime:
    """Probe of the ffmpeg installation, performed once per handle.

    Concurrent callers of :meth:`ensure_loaded` share the same probe. The
    handle is created by whoever owns the export and passed down explicitly.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._ffmpeg: FFmpegWrapper | None = None
        self._encoders: set[str] = set()
        self._future: asyncio.Future | None = None

    @property
    def loaded(self) -> bool:
        return self._future is not None and self._future.done() and not self._future.exception()

    @property
    def loading(self) -> bool:
        return self._future is not None and not self._future.done()

    @property
    def ffmpeg(self) -> FFmpegWrapper:
        if self._ffmpeg is None:
            raise EncoderConfigurationUnsupported("Encoder runtime used before ensure_loaded()")
        return self._ffmpeg

    @property
    def encoders(self) -> set[str]:
        return set(self._encoders)

    async def ensure_loaded(self) -> FFmpegWrapper:
        """Return the ffmpeg wrapper, probing the installation on first use."""
        if self._future is None:
            self._future = asyncio.ensure_future(self._load())
        future = self._future
        try:
            # shield: a cancelled caller must not cancel the shared probe
            return await asyncio.shield(future)
        except Exception:
            # A failed probe is not cached, the next call retries
            if self._future is future:
                self._future = None
            raise

    async def _load(self) -> FFmpegWrapper:
        wrapper = FFmpegWrapper(self.settings.ffmpeg_path, self.settings.ffprobe_path)
        self._encoders = await wrapper.list_encoders()
        self._ffmpeg = wrapper
        logger.info(f"Encoder runtime ready: {wrapper.ffmpeg_path} ({len(self._encoders)} encoders)")
        return wrapper

    async def check_codec(self, spec: CodecSpec) -> None:
        """
        Verify that the runtime can encode a codec spec.

        Raises:
            EncoderConfigurationUnsupported: the video or audio encoder is missing
        """
        await self.ensure_loaded()
        for encoder in (spec.encoder, spec.audio_encoder):
            if encoder not in self._encoders:
                raise EncoderConfigurationUnsupported(
                    f"Encoder '{encoder}' for codec '{spec.codec}' is not available in this ffmpeg build",
                    codec=spec.codec,
                )
