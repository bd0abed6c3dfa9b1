"""Positioning of secondary media (slide videos, slide audio, background video)."""

import asyncio
from typing import Literal

from loguru import logger

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import SyncSettings
from lyric_video.core.exceptions import SeekTimeout
from lyric_video.media.audio import AudioMixGraph
from lyric_video.media.sources import MediaHandles, TimedMedia
from lyric_video.models.render_config import RenderConfig
from lyric_video.models.slide import Slide
from lyric_video.models.track import AudioMetadata

SyncMode = Literal["live", "exact"]


def target_media_time(slide: Slide, time: float, source_duration: float | None = None) -> float | None:
    """
    Local media position a slide's source should show at global ``time``.

    Args:
        slide: The slide
        time: Global timeline position in seconds
        source_duration: Length of the media; positions past it loop

    Returns:
        (time - start) * rate + media_start_offset, or None outside the slide
    """
    if not slide.contains(time):
        return None
    target = (time - slide.start_time) * slide.playback_rate + slide.media_start_offset
    duration = source_duration or slide.media_duration
    if duration and duration > 0 and target >= duration:
        target %= duration
    return target


def background_target_time(time: float, duration: float) -> float:
    """Looping background video position."""
    if duration <= 0:
        return 0.0
    return time % duration


def wrapped_drift(current: float, target: float, duration: float) -> float:
    """Distance between two positions on a loop of ``duration`` seconds."""
    drift = abs(current - target)
    if duration > 0:
        drift = min(drift, duration - drift % duration)
    return drift


class MediaSynchronizer:
    """Drives every timed media handle to the position a timestamp requires.

    ``live`` mode never blocks: seeks past the drift band are scheduled as
    tasks and the caller renders with whatever frame is current. ``exact``
    mode awaits each seek, bounded by the seek timeout.
    """

    def __init__(
        self,
        settings: SyncSettings,
        token: CancellationToken | None = None,
        mix_graph: AudioMixGraph | None = None,
    ):
        self.settings = settings
        self.token = token or CancellationToken()
        self.mix_graph = mix_graph
        self.timeouts: list[SeekTimeout] = []
        self._pending: dict[str, asyncio.Task] = {}

    async def sync_exact(
        self,
        time: float,
        slides: list[Slide],
        media: MediaHandles,
        metadata: AudioMetadata | None = None,
        config: RenderConfig | None = None,
    ) -> None:
        """Position every source for ``time`` before the frame is drawn."""
        self.token.raise_if_cancelled("seek")
        config = config or RenderConfig()

        background = media.get(MediaHandles.BACKGROUND)
        if isinstance(background, TimedMedia):
            background.muted = True
            target = background_target_time(time, background.duration)
            if abs(background.current_time - target) > self.settings.exact_tolerance:
                await self._bounded_seek(background, target)

        for slide in slides:
            source = media.slide(slide.id)
            if not isinstance(source, TimedMedia):
                continue

            target = target_media_time(slide, time, source.duration) if self._visible(slide, config) else None
            if target is None:
                source.pause()
                self._reconcile_audio(slide, source, active=False)
                continue

            source.playback_rate = slide.playback_rate
            if abs(source.current_time - target) > self.settings.exact_tolerance:
                await self._bounded_seek(source, target)
            self._reconcile_audio(slide, source, active=True)

    def sync_live(
        self,
        time: float,
        slides: list[Slide],
        media: MediaHandles,
        metadata: AudioMetadata | None = None,
        config: RenderConfig | None = None,
    ) -> None:
        """Nudge sources toward ``time`` without waiting for any seek."""
        config = config or RenderConfig()

        background = media.get(MediaHandles.BACKGROUND)
        if isinstance(background, TimedMedia):
            background.muted = True
            target = background_target_time(time, background.duration)
            current = background.current_time
            wrapped = target < current and (current - target) > background.duration / 2
            if wrapped or wrapped_drift(current, target, background.duration) > self.settings.live_background_tolerance:
                self._schedule_seek(background, target)
            background.play()

        for slide in slides:
            source = media.slide(slide.id)
            if not isinstance(source, TimedMedia):
                continue

            target = target_media_time(slide, time, source.duration) if self._visible(slide, config) else None
            if target is None:
                source.pause()
                self._reconcile_audio(slide, source, active=False)
                continue

            source.playback_rate = slide.playback_rate
            if abs(source.current_time - target) > self.settings.live_overlay_tolerance:
                self._schedule_seek(source, target)
            self._reconcile_audio(slide, source, active=True)
            source.play()

    @staticmethod
    def _visible(slide: Slide, config: RenderConfig) -> bool:
        layers = config.layer_visibility.audio if slide.kind == "audio" else config.layer_visibility.visual
        return layers.get(slide.layer, True)

    async def _bounded_seek(self, source: TimedMedia, target: float) -> None:
        try:
            await asyncio.wait_for(source.seek(target), timeout=self.settings.seek_timeout)
        except asyncio.TimeoutError:
            error = SeekTimeout(
                f"Seek of {source.key} to {target:.3f}s exceeded {self.settings.seek_timeout}s, "
                f"drawing stale frame at {source.current_time:.3f}s",
                source_id=source.key,
                target=target,
            )
            self.timeouts.append(error)
            logger.warning(str(error))

    def _schedule_seek(self, source: TimedMedia, target: float) -> None:
        pending = self._pending.get(source.key)
        if pending is not None and not pending.done():
            return
        task = asyncio.get_running_loop().create_task(source.seek(target))
        task.add_done_callback(self._seek_done)
        self._pending[source.key] = task

    @staticmethod
    def _seek_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning(f"Live seek failed: {task.exception()}")

    def _reconcile_audio(self, slide: Slide, source: TimedMedia, active: bool) -> None:
        """Audible sources are unmuted and routed into the mix; silent ones are muted."""
        audible = active and not slide.is_muted

        if not audible:
            source.muted = True
            return

        source.muted = False
        source.volume = slide.volume
        if self.mix_graph is None or source.audio is None:
            return
        if self.mix_graph.is_connected(slide.id):
            self.mix_graph.set_volume(slide.id, slide.volume)
        else:
            self.mix_graph.connect(
                slide.id,
                source.audio,
                volume=slide.volume,
                start_time=slide.start_time,
                end_time=slide.end_time,
                media_offset=slide.media_start_offset,
                playback_rate=slide.playback_rate,
                loop=True,
            )

    async def close(self) -> None:
        """Cancel and reap any live seeks still in flight."""
        tasks = [t for t in self._pending.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
