"""Export orchestration: preload, per-track encode, finalize."""

import inspect
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import aiofiles
from loguru import logger

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import Settings, get_settings
from lyric_video.core.exceptions import (
    AbortRequested,
    AssetLoadError,
    AudioDecodeError,
    ExportInProgressError,
)
from lyric_video.core.resources import ResourceTracker
from lyric_video.core.runtime import EncoderRuntime
from lyric_video.encode.base import EncodeBackend, FrameExactEncoder, RenderOptions, TrackEncodeResult, TrackJob
from lyric_video.encode.codecs import dimensions_for, select_codec
from lyric_video.encode.live import LiveCaptureBackend
from lyric_video.encode.pipe import PipeBackend
from lyric_video.encode.sequence import SequenceBackend
from lyric_video.media.audio import DecodedAudio, decode_audio
from lyric_video.media.loader import MediaLoader
from lyric_video.media.sources import MediaHandles
from lyric_video.models.lyrics import shift_lines
from lyric_video.models.render_config import RenderConfig, VideoPreset
from lyric_video.models.slide import Slide
from lyric_video.models.task import ExportOptions, ExportProgress, ExportResult, ExportState
from lyric_video.models.track import Track
from lyric_video.render.text import default_font_provider
from lyric_video.sync.synchronizer import MediaSynchronizer

BACKENDS: dict[str, type[EncodeBackend]] = {
    "pipe": PipeBackend,
    "sequence": SequenceBackend,
    "live": LiveCaptureBackend,
}

BackendFactory = Callable[[str, EncoderRuntime, Settings, Path, CancellationToken], EncodeBackend]


def create_backend(
    name: str,
    runtime: EncoderRuntime,
    settings: Settings,
    temp_dir: Path,
    token: CancellationToken,
) -> EncodeBackend:
    """Instantiate an encode backend by name."""
    if name not in BACKENDS:
        raise ValueError(f"Unknown encode backend '{name}'. Available: {', '.join(BACKENDS)}")
    return BACKENDS[name](runtime, settings, temp_dir, token)


class ExportOrchestrator:
    """Runs one export at a time from preload to the finished container.

    Every transient resource (media handles, encoder process, temp files) is
    registered with a :class:`ResourceTracker` and released exactly once,
    whether the export succeeds, fails or is aborted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        runtime: EncoderRuntime | None = None,
        backend_factory: BackendFactory | None = None,
        stop_preview: Callable[[], Any] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Application settings
            runtime: Encoder runtime handle (created lazily from settings if omitted)
            backend_factory: Builds the encode backend for a backend name
            stop_preview: Called before every export to stop a running live preview
        """
        self.settings = settings or get_settings()
        self.runtime = runtime or EncoderRuntime(self.settings)
        self.backend_factory = backend_factory or create_backend
        self.stop_preview = stop_preview

        self.state = ExportState.IDLE
        self.progress = ExportProgress()
        self.last_tracker: ResourceTracker | None = None
        self._token: CancellationToken | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def abort(self, reason: str = "export aborted") -> None:
        """Request cancellation of the running export. Safe to call repeatedly."""
        if self._token is not None:
            self._token.cancel(reason)

    async def export(
        self,
        track: Track,
        slides: list[Slide],
        preset: VideoPreset | str,
        config: RenderConfig,
        options: ExportOptions | None = None,
        on_progress: Callable[[float, str], None] | None = None,
        on_log: Callable[[str], None] | None = None,
        raise_on_error: bool = False,
    ) -> ExportResult:
        """Export a single track. See :meth:`export_playlist`."""
        return await self.export_playlist(
            [track], slides, preset, config, options, on_progress, on_log, raise_on_error
        )

    async def export_playlist(
        self,
        tracks: list[Track],
        slides: list[Slide],
        preset: VideoPreset | str,
        config: RenderConfig,
        options: ExportOptions | None = None,
        on_progress: Callable[[float, str], None] | None = None,
        on_log: Callable[[str], None] | None = None,
        raise_on_error: bool = False,
    ) -> ExportResult:
        """
        Export tracks back to back into one continuous container.

        Args:
            tracks: Ordered tracks
            slides: Timeline slides, shared by every track
            preset: Layout preset
            config: Render configuration
            options: Export overrides
            on_progress: Callback(percent, stage) with per-track percent
            on_log: Callback receiving log messages emitted during the export
            raise_on_error: Re-raise failures instead of returning a failed result

        Returns:
            ExportResult with the container bytes on success

        Raises:
            ExportInProgressError: another export is running on this orchestrator
        """
        if self._running:
            raise ExportInProgressError("An export is already running")
        if not tracks:
            raise ValueError("Nothing to export: no tracks")

        self._running = True
        token = CancellationToken()
        self._token = token
        tracker = ResourceTracker()
        self.last_tracker = tracker

        start_time = time.time()
        settings = self.settings
        temp_dir = settings.paths.temp_dir / f"export_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"

        self.progress = ExportProgress(total_tracks=len(tracks), started_at=datetime.now())
        self._set_state(ExportState.IDLE)
        floor = {"track": 0, "percent": 0.0}

        def report(track_index: int, percent: float, stage: str) -> None:
            if track_index != floor["track"]:
                floor["track"], floor["percent"] = track_index, 0.0
            percent = max(floor["percent"], min(100.0, percent))
            floor["percent"] = percent
            self.progress = self.progress.update(track_index=track_index, progress=percent, stage=stage)
            if on_progress:
                on_progress(percent, stage or "导出中...")

        sink_id = None
        if on_log:
            sink_id = logger.add(lambda message: on_log(message.record["message"]), level="INFO")

        try:
            await self._stop_preview()

            options = (options or ExportOptions()).with_defaults(settings.export)
            width, height = dimensions_for(options.resolution, options.aspect_ratio)
            spec = select_codec(options.resolution, options.quality, options.codec)
            await self.runtime.check_codec(spec)

            temp_dir.mkdir(parents=True, exist_ok=True)
            if settings.debug:
                logger.info(f"Debug mode: keeping temp dir {temp_dir}")
            else:
                tracker.track("temp_dir", lambda: shutil.rmtree(temp_dir, ignore_errors=True))

            # Preload
            self._set_state(ExportState.PRELOADING)
            report(0, 0, "预加载媒体...")
            loader = MediaLoader(settings, temp_dir / "media", tracker, token, self.runtime.ffmpeg)
            media = await loader.preload(slides, config)
            token.raise_if_cancelled("preload")

            backend = self.backend_factory(options.backend_name, self.runtime, settings, temp_dir / "encode", token)
            tracker.track("backend", backend.abort)
            await backend.open(width, height, options.fps, spec, options.quality)

            synchronizer = MediaSynchronizer(settings.sync, token)
            tracker.track("synchronizer", synchronizer.close)

            render = RenderOptions(
                width=width,
                height=height,
                fps=options.fps,
                preset=preset,
                config=config,
                font_name=options.font_name,
                font_scale=options.font_scale,
                blur=options.blur,
                fonts=default_font_provider(tuple(sorted((k, str(v)) for k, v in settings.fonts.items()))),
            )

            # Encode
            origin_us = 0
            frames = 0
            for index, track in enumerate(tracks):
                token.raise_if_cancelled("track")
                self._set_state(ExportState.ENCODING, track_index=index)
                logger.info(f"Encoding track {index + 1}/{len(tracks)}: {track.metadata.title}")

                await loader.load_track_media(track.metadata, media)
                audio = await self._load_primary_audio(loader, track, index, temp_dir)
                job = TrackJob(
                    audio=audio,
                    lyrics=shift_lines(track.lyrics, options.lyric_offset),
                    metadata=track.metadata,
                    slides=slides,
                    media=media,
                    is_first_track=index == 0,
                    is_last_track=index == len(tracks) - 1,
                )
                result = await self._encode_track(
                    backend, synchronizer, job, render, origin_us, index, token,
                    lambda p, s, i=index: report(i, p, s),
                )
                origin_us = result.end_us
                frames += result.frame_count

            # Finalize
            self._set_state(ExportState.FINALIZING)
            report(len(tracks) - 1, 100, "合成输出文件...")
            output_path = options.output_path or (
                settings.paths.output_dir
                / f"{_slug(tracks[0].metadata.title)}_{datetime.now().strftime('%H%M%S')}.{spec.extension}"
            )
            # Mux into the temp dir so a failed finalize never touches an existing file
            staged = await backend.finalize(temp_dir / f"output.{spec.extension}")
            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staged), output_path)

            async with aiofiles.open(output_path, "rb") as f:
                data = await f.read()

            self._set_state(ExportState.DONE)
            logger.info(f"Export finished: {output_path} ({len(data) / 1024 / 1024:.1f} MB)")
            return ExportResult(
                success=True,
                data=data,
                format=spec.container,
                duration=origin_us / 1_000_000,
                frame_count=frames,
                output_path=output_path,
                elapsed=time.time() - start_time,
            )

        except AbortRequested as e:
            logger.info(f"Export aborted: {e}")
            self._set_state(ExportState.ABORTED)
            return ExportResult(success=False, aborted=True, elapsed=time.time() - start_time)

        except Exception as e:
            logger.exception(f"Export failed: {e}")
            stage = getattr(e, "stage", None) or self.state.value
            self._set_state(ExportState.FAILED)
            if raise_on_error:
                raise
            return ExportResult(
                success=False,
                error_kind=type(e).__name__,
                error_stage=stage,
                error_message=str(e),
                elapsed=time.time() - start_time,
            )

        finally:
            await tracker.release_all()
            if sink_id is not None:
                logger.remove(sink_id)
            self._token = None
            self._running = False

    async def _encode_track(
        self,
        backend: EncodeBackend,
        synchronizer: MediaSynchronizer,
        job: TrackJob,
        render: RenderOptions,
        origin_us: int,
        index: int,
        token: CancellationToken,
        on_progress: Callable[[float, str], None],
    ) -> TrackEncodeResult:
        if isinstance(backend, LiveCaptureBackend):
            return await backend.capture_track(job, render, synchronizer, origin_us, index, on_progress)
        encoder = FrameExactEncoder(backend, synchronizer, self.settings, token)
        return await encoder.encode_track(job, render, origin_us, index, on_progress)

    async def _load_primary_audio(
        self, loader: MediaLoader, track: Track, index: int, temp_dir: Path
    ) -> DecodedAudio:
        try:
            path = await loader.fetch(f"track_{index}", track.audio_source)
        except AssetLoadError as e:
            raise AudioDecodeError(f"Primary audio unavailable: {e}")
        return await decode_audio(
            path,
            self.settings.export.audio_sample_rate,
            ffmpeg=self.runtime.ffmpeg,
            temp_dir=temp_dir / "audio",
        )

    async def _stop_preview(self) -> None:
        if self.stop_preview is None:
            return
        result = self.stop_preview()
        if inspect.isawaitable(result):
            await result

    def _set_state(self, state: ExportState, track_index: int | None = None) -> None:
        if state != self.state:
            logger.debug(f"Export state: {self.state.value} -> {state.value}")
        self.state = state
        # A new track starts from zero
        progress = 0.0 if track_index is not None and track_index != self.progress.track_index else None
        self.progress = self.progress.update(state=state, track_index=track_index, progress=progress)


def _slug(text: str) -> str:
    cleaned = "".join(c if c.isalnum() else "_" for c in text).strip("_")
    return cleaned or "export"

