"""Live capture: wall-clock playback recorded at a fixed frame rate."""

import asyncio
import math
import time
from typing import Callable

from loguru import logger

from lyric_video.core.exceptions import AbortRequested
from lyric_video.encode.base import (
    ProgressCallback,
    RenderOptions,
    TrackEncodeResult,
    TrackJob,
    frame_count,
)
from lyric_video.encode.pipe import PipeBackend
from lyric_video.media.audio import AudioMixGraph
from lyric_video.render.compositor import render_frame
from lyric_video.sync.synchronizer import MediaSynchronizer
from lyric_video.utils.time import TimeUtils


class MonotonicPlaybackClock:
    """Playback position that follows the monotonic wall clock."""

    def __init__(self, duration: float, clock: Callable[[], float] = time.monotonic):
        self.duration = duration
        self._clock = clock
        self._started_at: float | None = None
        self._stopped_at: float | None = None

    def start(self) -> None:
        self._started_at = self._clock()
        self._stopped_at = None

    def stop(self) -> None:
        if self._started_at is not None and self._stopped_at is None:
            self._stopped_at = self._clock()

    @property
    def current_time(self) -> float:
        if self._started_at is None:
            return 0.0
        now = self._stopped_at if self._stopped_at is not None else self._clock()
        return min(self.duration, now - self._started_at)

    @property
    def ended(self) -> bool:
        return self.current_time >= self.duration

    async def sleep_until(self, position: float) -> None:
        delay = position - self.current_time
        await asyncio.sleep(max(0.0, delay))


ClockFactory = Callable[[float], MonotonicPlaybackClock]


class LiveCaptureBackend(PipeBackend):
    """Records what the live preview shows while the track plays in real time.

    Auxiliary media run in live mode; their audible sources join the mix graph
    as they become active. Rendering that falls behind the clock repeats the
    last frame so the raw stream stays at the fixed rate.
    """

    name = "live"

    def __init__(self, *args, clock_factory: ClockFactory = MonotonicPlaybackClock, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock_factory = clock_factory
        self.dropped_frames = 0

    async def capture_track(
        self,
        job: TrackJob,
        options: RenderOptions,
        synchronizer: MediaSynchronizer,
        origin_us: int = 0,
        track_index: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> TrackEncodeResult:
        """
        Play one track against the wall clock and record it.

        Args:
            job: Track audio, lyrics and media
            options: Render parameters
            synchronizer: Synchronizer in live mode for this track
            origin_us: Output timestamp of the track's first frame
            track_index: Position in the playlist
            on_progress: Callback(percent, stage)

        Returns:
            TrackEncodeResult with the frame count and timestamp range
        """
        fps = options.fps
        export = self.settings.export

        def report(percent: float, stage: str) -> None:
            if on_progress:
                on_progress(percent, stage)

        report(0, "准备实时录制...")
        await self.begin_track(track_index)

        total_frames = frame_count(job.duration, fps)
        graph = AudioMixGraph(sample_rate=job.audio.sample_rate, channels=job.audio.channels)
        graph.connect("primary", job.audio)
        if export.mix_slide_audio:
            synchronizer.mix_graph = graph

        clock = self.clock_factory(total_frames / fps)
        emitted = 0
        last_tick = 0.0
        last_percent = 0
        report(5, "实时录制中...")
        clock.start()
        try:
            while emitted < total_frames:
                if self.token.cancelled:
                    raise AbortRequested(self.token.reason or "abort requested")

                now = clock.current_time
                for source in job.media.timed():
                    source.advance(now - last_tick)
                last_tick = now
                synchronizer.sync_live(now, job.slides, job.media, job.metadata, options.config)

                due = min(total_frames, math.floor(now * fps + 1e-6) + 1)
                if due > emitted:
                    image = render_frame(
                        now,
                        options.width,
                        options.height,
                        job.lyrics,
                        job.metadata,
                        job.slides,
                        job.media,
                        options.preset,
                        options.config,
                        font_name=options.font_name,
                        font_scale=options.font_scale,
                        blur=options.blur,
                        duration=job.duration,
                        is_first_track=job.is_first_track,
                        is_last_track=job.is_last_track,
                        fonts=options.fonts,
                    )
                    self.dropped_frames += due - emitted - 1
                    while emitted < due:
                        await self.wait_for_capacity(export.backpressure_threshold)
                        await self.submit_video(image, TimeUtils.frame_timestamp_us(emitted, fps, origin_us))
                        emitted += 1

                percent = 5 + 90 * emitted / total_frames
                if int(percent) > last_percent:
                    last_percent = int(percent)
                    report(percent, f"实时录制 {emitted}/{total_frames}")

                if emitted < total_frames:
                    await clock.sleep_until(emitted / fps)
        finally:
            clock.stop()
            synchronizer.mix_graph = None
            for source in job.media.timed():
                source.pause()

        report(96, "混合音频...")
        padded = total_frames / fps
        mix = await asyncio.to_thread(graph.mixdown, padded)
        graph.release()

        chunk = max(1, round(export.audio_chunk_seconds * mix.sample_rate))
        total_samples = round(total_frames * mix.sample_rate / fps)
        audio = mix.padded_to(total_samples)
        for start in range(0, total_samples, chunk):
            await self.wait_for_capacity(export.backpressure_threshold)
            await self.submit_audio(
                audio.chunk(start, min(chunk, total_samples - start)),
                origin_us + TimeUtils.samples_to_us(start, mix.sample_rate),
            )

        report(99, "刷新编码器...")
        await self.pause()
        if self.dropped_frames:
            logger.warning(f"Live capture repeated {self.dropped_frames} frames to hold {fps}fps")
        report(100, "音轨完成")

        return TrackEncodeResult(
            frame_count=total_frames,
            start_us=origin_us,
            end_us=TimeUtils.frame_timestamp_us(total_frames, fps, origin_us),
        )
