"""Image-sequence backend: JPEG frames on disk, encoded in one ffmpeg pass."""

import asyncio
import io
from pathlib import Path

import aiofiles
from loguru import logger
from PIL import Image

from lyric_video.core.exceptions import EncoderRuntimeError
from lyric_video.encode.base import EncodeBackend


class SequenceBackend(EncodeBackend):
    """Writes numbered JPEG frames with a bounded set of in-flight writes.

    Keyframe requests are recorded as frame times and handed to the final
    encode as forced keyframes.
    """

    name = "sequence"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._frames_dir: Path | None = None
        self._inflight: set[asyncio.Task] = set()
        self._errors: list[BaseException] = []
        self._index = 0
        self.keyframe_times: list[float] = []

    @property
    def pattern(self) -> Path:
        return self._frames_dir / "frame_%06d.jpg"

    async def _open(self) -> None:
        await self.runtime.ensure_loaded()
        self._frames_dir = self.temp_dir / "frames"
        self._frames_dir.mkdir(parents=True, exist_ok=True)

    @property
    def video_queue_size(self) -> int:
        return len(self._inflight)

    async def encode_video_frame(self, image: Image.Image, timestamp_us: int, key_frame: bool) -> None:
        self._check_errors()
        path = self._frames_dir / f"frame_{self._index:06d}.jpg"
        if key_frame:
            self.keyframe_times.append(self._index / self.fps)
        self._index += 1

        task = asyncio.create_task(self._write_frame(image, path))
        self._inflight.add(task)
        task.add_done_callback(self._frame_written)

    def _frame_written(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._errors.append(task.exception())

    def _check_errors(self) -> None:
        if self._errors:
            raise EncoderRuntimeError(f"Frame write failed: {self._errors[0]}", stage="frame write")

    def _encode_jpeg(self, image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        quality = self.settings.export.jpeg_quality.get(self.quality, 92)
        image.convert("RGB").save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()

    async def _write_frame(self, image: Image.Image, path: Path) -> None:
        data = await asyncio.to_thread(self._encode_jpeg, image)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

    async def _wait_video_progress(self) -> None:
        if self._inflight:
            await asyncio.wait(set(self._inflight), return_when=asyncio.FIRST_COMPLETED)
        else:
            await asyncio.sleep(0.001)
        self._check_errors()

    async def _flush_video(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._check_errors()

    async def _finish_video(self) -> Path:
        if self._index == 0:
            raise EncoderRuntimeError("No frames were written", stage="encode")
        ffmpeg = await self.runtime.ensure_loaded()
        video_path = self.temp_dir / f"video.{self.spec.extension}"
        logger.info(f"Encoding {self._index} frames from {self._frames_dir}")
        return await ffmpeg.encode_image_sequence(
            self.pattern, self.fps, self.spec, video_path, keyframe_times=self.keyframe_times
        )

    async def _abort_video(self) -> None:
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
