"""Raw-frame pipe backend: one long-lived ffmpeg process fed over stdin."""

import asyncio
from pathlib import Path

from loguru import logger
from PIL import Image

from lyric_video.core.exceptions import EncoderRuntimeError
from lyric_video.encode.base import EncodeBackend


class PipeBackend(EncodeBackend):
    """Streams RGB24 frames into ffmpeg through a bounded queue.

    A writer task drains the queue into the process's stdin; ``drain()`` on
    the pipe is what slows submission down when the encoder falls behind.
    The process stays open across playlist tracks.
    """

    name = "pipe"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._process: asyncio.subprocess.Process | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._stderr: asyncio.Task | None = None
        self._video_path: Path | None = None

    async def _open(self) -> None:
        ffmpeg = await self.runtime.ensure_loaded()
        self._video_path = self.temp_dir / f"video.{self.spec.extension}"
        self._process = await ffmpeg.open_frame_pipe(
            self.width,
            self.height,
            self.fps,
            self.spec,
            self._video_path,
            self.settings.export.keyframe_interval,
        )
        self._stderr = asyncio.create_task(self._process.stderr.read())
        self._writer = asyncio.create_task(self._write_frames())

    async def _write_frames(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                if data is None:
                    return
                self._process.stdin.write(data)
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise EncoderRuntimeError(f"ffmpeg closed its input: {e}", stage="video")
            finally:
                self._queue.task_done()

    def _check_writer(self) -> None:
        if self._writer is None or not self._writer.done() or self._writer.cancelled():
            return
        error = self._writer.exception()
        if isinstance(error, EncoderRuntimeError):
            raise error
        if error is not None:
            raise EncoderRuntimeError(f"Frame writer failed: {error}", stage="video")

    @property
    def video_queue_size(self) -> int:
        return self._queue.qsize()

    async def encode_video_frame(self, image: Image.Image, timestamp_us: int, key_frame: bool) -> None:
        self._check_writer()
        if image.size != (self.width, self.height):
            raise EncoderRuntimeError(
                f"Frame size {image.size} does not match stream {self.width}x{self.height}", stage="video"
            )
        if image.mode != "RGB":
            image = image.convert("RGB")
        await self._queue.put(image.tobytes())

    async def _wait_video_progress(self) -> None:
        self._check_writer()
        await asyncio.sleep(0.001)

    async def pause(self) -> None:
        while not self._queue.empty():
            self.token.raise_if_cancelled("queue drain")
            await self._wait_video_progress()
        await super().pause()

    async def _flush_video(self) -> None:
        while not self._queue.empty():
            await self._wait_video_progress()
        self._check_writer()

    async def _finish_video(self) -> Path:
        if self._writer is not None and not self._writer.done():
            await self._queue.put(None)
            await self._writer
        self._check_writer()

        self._process.stdin.close()
        returncode = await self._process.wait()
        stderr = await self._stderr if self._stderr else b""
        if returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {returncode}"
            logger.error(f"Frame pipe encoding failed: {message}")
            raise EncoderRuntimeError(f"Frame pipe encoding failed: {message}", stage="encode")
        return self._video_path

    async def _abort_video(self) -> None:
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        if self._process is not None and self._process.returncode is None:
            self._process.kill()
            await self._process.wait()
        tasks = [t for t in (self._writer, self._stderr) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Frame pipe aborted")
