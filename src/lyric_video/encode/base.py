"""Encode backend interface and the frame-exact export driver."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import numpy as np
import soundfile as sf
from loguru import logger
from PIL import Image

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import Settings
from lyric_video.core.exceptions import EncoderRuntimeError
from lyric_video.encode.codecs import CodecSpec
from lyric_video.media.audio import AudioMixGraph, DecodedAudio
from lyric_video.media.sources import MediaHandles
from lyric_video.models.lyrics import LyricLine
from lyric_video.models.render_config import RenderConfig, VideoPreset
from lyric_video.models.slide import Slide
from lyric_video.models.track import AudioMetadata
from lyric_video.render.compositor import render_frame
from lyric_video.render.text import FontProvider
from lyric_video.sync.synchronizer import MediaSynchronizer
from lyric_video.utils.time import TimeUtils

if TYPE_CHECKING:
    from lyric_video.core.runtime import EncoderRuntime

US_PER_SECOND = 1_000_000

ProgressCallback = Callable[[float, str], None]


def frame_count(duration: float, fps: int) -> int:
    """Frames encoded for a track; an empty track still gets one frame."""
    return max(1, TimeUtils.frame_count(duration, fps))


@dataclass
class RenderOptions:
    """Per-export render parameters shared by every track."""

    width: int
    height: int
    fps: int
    preset: VideoPreset | str = VideoPreset.DEFAULT
    config: RenderConfig = field(default_factory=RenderConfig)
    font_name: str | None = None
    font_scale: float = 1.0
    blur: bool = False
    fonts: FontProvider | None = None


@dataclass
class TrackJob:
    """One track ready to encode: decoded audio plus everything drawn over it."""

    audio: DecodedAudio
    lyrics: list[LyricLine]
    metadata: AudioMetadata
    slides: list[Slide]
    media: MediaHandles
    is_first_track: bool = True
    is_last_track: bool = True

    @property
    def duration(self) -> float:
        return self.audio.duration


@dataclass
class TrackEncodeResult:
    frame_count: int
    start_us: int
    end_us: int

    @property
    def duration(self) -> float:
        return (self.end_us - self.start_us) / US_PER_SECOND


def build_track_mix(
    job: TrackJob,
    config: RenderConfig,
    duration: float,
    include_slides: bool = True,
) -> DecodedAudio:
    """Primary audio plus every audible slide source, rendered over [0, duration)."""
    graph = AudioMixGraph(sample_rate=job.audio.sample_rate, channels=job.audio.channels)
    graph.connect("primary", job.audio)
    if include_slides:
        for slide in job.slides:
            if slide.is_muted or not config.layer_visibility.audio.get(slide.layer, True):
                continue
            source = job.media.slide(slide.id)
            audio = getattr(source, "audio", None)
            if audio is None:
                continue
            if audio.sample_rate != graph.sample_rate:
                logger.warning(f"Skipping audio of slide {slide.id}: sample rate {audio.sample_rate}Hz")
                continue
            graph.connect(
                slide.id,
                audio,
                volume=slide.volume,
                start_time=slide.start_time,
                end_time=slide.end_time,
                media_offset=slide.media_start_offset,
                playback_rate=slide.playback_rate,
                loop=True,
            )
    try:
        return graph.mixdown(duration)
    finally:
        graph.release()


class AudioChunkWriter:
    """Writes timestamped PCM chunks to a WAV file through a bounded queue.

    Chunks must arrive in strictly increasing timestamp order. A gap between
    the expected and actual timestamp is filled with silence.
    """

    def __init__(self, path: Path, sample_rate: int, channels: int = 2):
        self.path = path
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_written = 0
        self._file: sf.SoundFile | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._origin_us: int | None = None
        self._last_us = -1
        self._closed = False

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def duration(self) -> float:
        return self.frames_written / self.sample_rate

    async def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = sf.SoundFile(
            str(self.path), mode="w", samplerate=self.sample_rate, channels=self.channels, subtype="PCM_16"
        )
        self._writer = asyncio.create_task(self._write_loop())

    async def write(self, samples: np.ndarray, timestamp_us: int) -> None:
        if self._file is None or self._closed:
            raise EncoderRuntimeError("Audio writer is not open", stage="audio")
        self._check_writer()
        if timestamp_us <= self._last_us:
            raise EncoderRuntimeError(
                f"Audio timestamp {timestamp_us} is not after {self._last_us}", stage="audio"
            )
        self._last_us = timestamp_us
        if self._origin_us is None:
            self._origin_us = timestamp_us
        await self._queue.put((samples, timestamp_us))

    async def _write_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                samples, timestamp_us = item
                expected = round((timestamp_us - self._origin_us) * self.sample_rate / US_PER_SECOND)
                if expected > self.frames_written:
                    gap = np.zeros((expected - self.frames_written, self.channels), dtype=np.float32)
                    await asyncio.to_thread(self._file.write, gap)
                    self.frames_written += gap.shape[0]
                await asyncio.to_thread(self._file.write, samples)
                self.frames_written += samples.shape[0]
            finally:
                self._queue.task_done()

    def _check_writer(self) -> None:
        if self._writer is not None and self._writer.done() and not self._writer.cancelled():
            error = self._writer.exception()
            if error is not None:
                raise EncoderRuntimeError(f"Audio writer failed: {error}", stage="audio")

    async def flush(self) -> None:
        """Write everything queued so far."""
        while not self._queue.empty():
            self._check_writer()
            await asyncio.sleep(0.001)
        await self._queue.join()
        self._check_writer()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is not None and not self._writer.done():
            await self._queue.put(None)
            await self._writer
        self._check_writer()
        if self._file is not None:
            self._file.close()

    async def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
        if self._file is not None:
            self._file.close()


class EncodeBackend(ABC):
    """Incremental encoder fed timestamped frames and audio chunks.

    Subclasses implement the video side; the audio side is a shared
    :class:`AudioChunkWriter`. ``finalize`` muxes both into the container.
    """

    name = "base"

    def __init__(
        self,
        runtime: "EncoderRuntime",
        settings: Settings,
        temp_dir: Path,
        token: CancellationToken | None = None,
    ):
        self.runtime = runtime
        self.settings = settings
        self.temp_dir = temp_dir
        self.token = token or CancellationToken()

        self.width = 0
        self.height = 0
        self.fps = 0
        self.spec: CodecSpec | None = None
        self.quality = settings.export.quality
        self.audio: AudioChunkWriter | None = None
        self.frame_count = 0
        self._last_video_us = -1
        self._opened = False
        self._finished = False

    async def open(self, width: int, height: int, fps: int, spec: CodecSpec, quality: str | None = None) -> None:
        """Start the encoder for a stream of ``width`` x ``height`` frames at ``fps``."""
        self.width, self.height, self.fps, self.spec = width, height, fps, spec
        self.quality = quality or self.quality
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.audio = AudioChunkWriter(
            self.temp_dir / "audio.wav", self.settings.export.audio_sample_rate, channels=2
        )
        await self.audio.open()
        await self._open()
        self._opened = True
        logger.info(f"{self.name} backend opened: {width}x{height}@{fps} {spec.codec} ({spec.encoder})")

    async def begin_track(self, index: int) -> None:
        """Resume after :meth:`pause`; called before every track."""
        logger.debug(f"{self.name} backend: track {index + 1}")

    async def submit_video(self, image: Image.Image, timestamp_us: int, key_frame: bool = False) -> None:
        if timestamp_us <= self._last_video_us:
            raise EncoderRuntimeError(
                f"Video timestamp {timestamp_us} is not after {self._last_video_us}", stage="video"
            )
        self._last_video_us = timestamp_us
        await self.encode_video_frame(image, timestamp_us, key_frame)
        self.frame_count += 1

    async def submit_audio(self, samples: np.ndarray, timestamp_us: int) -> None:
        await self.encode_audio_chunk(samples, timestamp_us)

    @abstractmethod
    async def _open(self) -> None: ...

    @abstractmethod
    async def encode_video_frame(self, image: Image.Image, timestamp_us: int, key_frame: bool) -> None: ...

    async def encode_audio_chunk(self, samples: np.ndarray, timestamp_us: int) -> None:
        await self.audio.write(samples, timestamp_us)

    @property
    @abstractmethod
    def video_queue_size(self) -> int: ...

    @property
    def audio_queue_size(self) -> int:
        return self.audio.queue_size if self.audio else 0

    async def wait_for_capacity(self, threshold: int) -> None:
        """Yield until both queues are at or below ``threshold``."""
        while self.video_queue_size > threshold or self.audio_queue_size > threshold:
            self.token.raise_if_cancelled("queue drain")
            await self._wait_video_progress()

    async def _wait_video_progress(self) -> None:
        await asyncio.sleep(0.001)

    async def pause(self) -> None:
        """Hold the stream open between playlist tracks."""
        await self.audio.flush()

    async def flush(self) -> None:
        """Push every queued frame and chunk into the encoder."""
        await self._flush_video()
        await self.audio.flush()

    @abstractmethod
    async def _flush_video(self) -> None: ...

    @abstractmethod
    async def _finish_video(self) -> Path:
        """Close the video stream and return the video-only file."""

    async def finalize(self, output_path: Path) -> Path:
        """
        Flush both writers and mux them into the output container.

        Args:
            output_path: Container path

        Returns:
            Output path
        """
        self.token.raise_if_cancelled("flush")
        await self.flush()
        await self.audio.close()
        video_path = await self._finish_video()
        self.token.raise_if_cancelled("mux")

        ffmpeg = await self.runtime.ensure_loaded()
        await ffmpeg.mux(
            video_path,
            self.audio.path,
            output_path,
            self.spec,
            audio_bitrate=self.settings.export.audio_bitrate,
            sample_rate=self.settings.export.audio_sample_rate,
        )
        self._finished = True
        logger.info(f"{self.name} backend wrote {self.frame_count} frames to {output_path}")
        return output_path

    async def abort(self) -> None:
        """Stop encoding and discard partial output. Safe to call more than once."""
        if self._finished:
            return
        self._finished = True
        await self._abort_video()
        if self.audio is not None:
            await self.audio.abort()

    @abstractmethod
    async def _abort_video(self) -> None: ...


class FrameExactEncoder:
    """Drives an :class:`EncodeBackend` frame by frame from timeline time zero.

    Each frame synchronises auxiliary media exactly, renders, and submits with
    a timestamp derived from the frame index, so output is independent of how
    long any step takes.

    The synchronizer here has no mix graph: audible slides are mixed into the
    track audio up front by :func:`build_track_mix`.
    """

    def __init__(
        self,
        backend: EncodeBackend,
        synchronizer: MediaSynchronizer,
        settings: Settings,
        token: CancellationToken | None = None,
    ):
        self.backend = backend
        self.synchronizer = synchronizer
        self.settings = settings
        self.token = token or CancellationToken()

    async def encode_track(
        self,
        job: TrackJob,
        options: RenderOptions,
        origin_us: int = 0,
        track_index: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> TrackEncodeResult:
        """
        Encode one track starting at ``origin_us`` on the output timeline.

        Args:
            job: Track audio, lyrics and media
            options: Render parameters
            origin_us: Output timestamp of the track's first frame
            track_index: Position in the playlist
            on_progress: Callback(percent, stage)

        Returns:
            TrackEncodeResult with the frame count and timestamp range
        """
        export = self.settings.export
        fps = options.fps
        backend = self.backend

        def report(percent: float, stage: str) -> None:
            if on_progress:
                on_progress(percent, stage)

        report(0, "准备编码...")
        await backend.begin_track(track_index)

        total_frames = frame_count(job.duration, fps)
        padded = total_frames / fps
        logger.info(
            f"Track {track_index + 1}: {job.duration:.2f}s -> {total_frames} frames @ {fps}fps "
            f"({backend.name} backend)"
        )

        report(5, "混合音频...")
        mix = await asyncio.to_thread(
            build_track_mix, job, options.config, padded, export.mix_slide_audio
        )
        await self._submit_audio(mix, total_frames, fps, origin_us)

        report(10, "渲染帧...")
        last_percent = 10
        for i in range(total_frames):
            self.token.raise_if_cancelled("frame")
            t = i / fps

            await self.synchronizer.sync_exact(t, job.slides, job.media, job.metadata, options.config)
            image = await asyncio.to_thread(
                render_frame,
                t,
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

            await backend.wait_for_capacity(export.backpressure_threshold)
            await backend.submit_video(
                image,
                TimeUtils.frame_timestamp_us(i, fps, origin_us),
                key_frame=TimeUtils.is_keyframe(i, fps, export.keyframe_interval),
            )

            percent = 10 + 89 * (i + 1) / total_frames
            if int(percent) > last_percent:
                last_percent = int(percent)
                report(percent, f"渲染帧 {i + 1}/{total_frames}")

        report(99, "刷新编码器...")
        await backend.pause()
        report(100, "音轨完成")

        return TrackEncodeResult(
            frame_count=total_frames,
            start_us=origin_us,
            end_us=TimeUtils.frame_timestamp_us(total_frames, fps, origin_us),
        )

    async def _submit_audio(self, mix: DecodedAudio, total_frames: int, fps: int, origin_us: int) -> None:
        """Queue the track audio as fixed-size chunks padded to the video length."""
        sample_rate = mix.sample_rate
        total_samples = round(total_frames * sample_rate / fps)
        chunk = max(1, round(self.settings.export.audio_chunk_seconds * sample_rate))
        audio = mix.padded_to(total_samples)

        for start in range(0, total_samples, chunk):
            self.token.raise_if_cancelled("audio")
            count = min(chunk, total_samples - start)
            await self.backend.wait_for_capacity(self.settings.export.backpressure_threshold)
            await self.backend.submit_audio(
                audio.chunk(start, count), origin_us + TimeUtils.samples_to_us(start, sample_rate)
            )
