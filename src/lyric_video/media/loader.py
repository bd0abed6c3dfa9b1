"""Resolve media sources into ready-to-sample handles."""

import asyncio
import io
import re
from pathlib import Path
from urllib.parse import urlparse

import aiofiles
import httpx
from loguru import logger
from PIL import Image

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import Settings
from lyric_video.core.exceptions import AssetLoadError, AudioDecodeError
from lyric_video.core.resources import ResourceTracker
from lyric_video.media.audio import decode_audio
from lyric_video.media.sources import AudioSource, ImageSource, MediaHandle, MediaHandles, VideoSource
from lyric_video.models.render_config import RenderConfig
from lyric_video.models.slide import Slide
from lyric_video.models.track import AudioMetadata
from lyric_video.utils.ffmpeg import FFmpegWrapper


def is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


class MediaLoader:
    """Loads every asset an export references.

    A single failed asset never fails the export: it is logged and left out of
    the handles, and the compositor treats it as absent. Each loaded handle is
    registered with the resource tracker so it is released exactly once.
    """

    def __init__(
        self,
        settings: Settings,
        temp_dir: Path,
        tracker: ResourceTracker,
        token: CancellationToken | None = None,
        ffmpeg: FFmpegWrapper | None = None,
    ):
        self.settings = settings
        self.temp_dir = temp_dir
        self.tracker = tracker
        self.token = token or CancellationToken()
        self.ffmpeg = ffmpeg
        self.failures: list[AssetLoadError] = []

    async def preload(
        self,
        slides: list[Slide],
        config: RenderConfig,
        handles: MediaHandles | None = None,
    ) -> MediaHandles:
        """
        Load slide media and config-level images.

        Args:
            slides: Timeline slides
            config: Render configuration (background image, channel image)
            handles: Existing container to fill

        Returns:
            Handles for every asset that loaded
        """
        handles = handles if handles is not None else MediaHandles()
        jobs = []

        for slide in slides:
            key = MediaHandles.slide_key(slide.id)
            if slide.kind == "image":
                jobs.append((key, self.load_image(key, slide.source)))
            elif slide.kind == "video":
                jobs.append((key, self.load_video(key, slide.source, with_audio=not slide.is_muted)))
            else:
                jobs.append((key, self.load_audio(key, slide.source)))

        if config.background_source == "image" and config.background_image:
            jobs.append(
                (MediaHandles.BACKGROUND_IMAGE, self.load_image(MediaHandles.BACKGROUND_IMAGE, config.background_image))
            )
        if config.show_channel_info and config.channel_info_image:
            jobs.append((MediaHandles.CHANNEL, self.load_image(MediaHandles.CHANNEL, config.channel_info_image)))

        await self._settle_all(jobs, handles)
        logger.info(f"Preloaded {len(handles)} media handles ({len(self.failures)} failed)")
        return handles

    async def load_track_media(self, metadata: AudioMetadata, handles: MediaHandles) -> None:
        """Swap in one track's cover or background video, releasing the previous track's."""
        for key in (MediaHandles.COVER, MediaHandles.BACKGROUND):
            if handles.pop(key) is not None:
                await self.tracker.release(f"media:{key}")

        if not metadata.cover_source:
            return

        if metadata.has_video_background:
            job = (
                MediaHandles.BACKGROUND,
                self.load_video(MediaHandles.BACKGROUND, metadata.cover_source, loop=True),
            )
        else:
            job = (MediaHandles.COVER, self.load_image(MediaHandles.COVER, metadata.cover_source))
        await self._settle_all([job], handles)

    async def _settle_all(self, jobs: list, handles: MediaHandles) -> None:
        results = await asyncio.gather(*(self._settle(key, coro) for key, coro in jobs))
        for (key, _), handle in zip(jobs, results):
            if handle is None:
                continue
            handles.set(key, handle)
            self.tracker.track(f"media:{key}", handle.release)

    async def _settle(self, key: str, coro) -> MediaHandle | None:
        try:
            self.token.raise_if_cancelled("asset load")
            return await asyncio.wait_for(coro, timeout=self.settings.sync.load_timeout)
        except asyncio.TimeoutError:
            error = AssetLoadError(f"Timed out loading {key}", source=key)
        except AssetLoadError as e:
            error = e
        finally:
            # The coroutine is never started when cancellation was already requested
            if asyncio.iscoroutine(coro):
                coro.close()

        self.failures.append(error)
        logger.warning(f"Skipping media {key}: {error}")
        return None

    async def load_image(self, key: str, source: str) -> ImageSource:
        path = await self.fetch(key, source)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
            image = await asyncio.to_thread(self._decode_image, data)
        except OSError as e:
            raise AssetLoadError(f"Cannot read image {source}: {e}", source=source)
        return ImageSource(key, image)

    @staticmethod
    def _decode_image(data: bytes) -> Image.Image:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image.convert("RGBA")

    async def load_video(self, key: str, source: str, loop: bool = False, with_audio: bool = False) -> VideoSource:
        path = await self.fetch(key, source)
        video = await asyncio.to_thread(VideoSource, key, path, loop)

        if with_audio and self.settings.export.mix_slide_audio:
            try:
                video.audio = await decode_audio(
                    path, self.settings.export.audio_sample_rate, self.ffmpeg, self.temp_dir
                )
            except AudioDecodeError as e:
                logger.warning(f"Video {key} has no usable audio: {e}")
        return video

    async def load_audio(self, key: str, source: str) -> AudioSource:
        path = await self.fetch(key, source)
        try:
            audio = await decode_audio(
                path, self.settings.export.audio_sample_rate, self.ffmpeg, self.temp_dir
            )
        except AudioDecodeError as e:
            raise AssetLoadError(str(e), source=source)
        return AudioSource(key, audio)

    async def fetch(self, key: str, source: str) -> Path:
        """Local path for a source, downloading URLs into the temp directory."""
        if not is_url(source):
            path = Path(source)
            if not path.exists():
                raise AssetLoadError(f"Media not found: {source}", source=source)
            return path

        suffix = Path(urlparse(source).path).suffix or ".bin"
        target = self.temp_dir / "downloads" / f"{re.sub(r'[^A-Za-z0-9_-]', '_', key)}{suffix}"
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with httpx.AsyncClient(timeout=self.settings.sync.load_timeout, follow_redirects=True) as client:
                response = await client.get(source)
        except httpx.HTTPError as e:
            raise AssetLoadError(f"Download failed for {source}: {e}", source=source)

        if response.status_code != 200:
            raise AssetLoadError(f"Download failed for {source}: HTTP {response.status_code}", source=source)

        async with aiofiles.open(target, "wb") as f:
            await f.write(response.content)

        logger.debug(f"Downloaded {source} -> {target}")
        return target
