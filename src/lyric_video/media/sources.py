"""Ready-to-sample media handles."""

import asyncio
import threading
from pathlib import Path

import cv2
from loguru import logger
from PIL import Image

from lyric_video.core.exceptions import AssetLoadError
from lyric_video.media.audio import DecodedAudio


class ImageSource:
    """A decoded still image."""

    kind = "image"

    def __init__(self, key: str, image: Image.Image):
        self.key = key
        self._image: Image.Image | None = image.convert("RGBA") if image.mode != "RGBA" else image

    @property
    def size(self) -> tuple[int, int]:
        return self._image.size if self._image else (0, 0)

    def frame(self) -> Image.Image | None:
        return self._image

    def release(self) -> None:
        if self._image is not None:
            self._image.close()
            self._image = None


class TimedMedia:
    """Playback state shared by every seekable source.

    ``current_time`` is the media-local position in seconds. Live mode moves
    it with :meth:`advance` while playing; exact mode moves it only through
    :meth:`seek`.
    """

    kind = "timed"

    def __init__(self, key: str, duration: float, loop: bool = False):
        self.key = key
        self.duration = duration
        self.loop = loop
        self.current_time = 0.0
        self.playback_rate = 1.0
        self.paused = True
        self.muted = True
        self.volume = 1.0
        self.seek_count = 0
        self.audio: DecodedAudio | None = None

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    def play(self) -> None:
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def advance(self, delta: float) -> None:
        """Move the local clock forward by wall-clock ``delta`` while playing."""
        if self.paused or delta <= 0:
            return
        position = self.current_time + delta * self.playback_rate
        if self.duration > 0:
            if self.loop:
                position %= self.duration
            else:
                position = min(position, self.duration)
        self.current_time = position

    async def seek(self, target: float) -> None:
        """Move to ``target`` and make the frame at that position available."""
        await self._seek(target)
        self.current_time = target
        self.seek_count += 1

    async def _seek(self, target: float) -> None:
        pass

    def frame(self) -> Image.Image | None:
        return None

    def release(self) -> None:
        self.pause()
        self.muted = True


class AudioSource(TimedMedia):
    """Decoded audio used by an audio slide."""

    kind = "audio"

    def __init__(self, key: str, audio: DecodedAudio):
        super().__init__(key, audio.duration)
        self.audio = audio

    def release(self) -> None:
        super().release()
        self.audio = None


class VideoSource(TimedMedia):
    """An OpenCV-decoded video file.

    Decoding is synchronous; exact-mode seeks run it on a worker thread. A
    lock serialises access to the capture between the two.
    """

    kind = "video"

    def __init__(self, key: str, path: Path, loop: bool = False):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._cap = cv2.VideoCapture(str(self.path))

        if not self._cap.isOpened():
            self._cap.release()
            raise AssetLoadError(f"Cannot open video: {self.path}", source=str(self.path))

        self.fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0
        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        total_frames = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        super().__init__(key, total_frames / self.fps if total_frames > 0 else 0.0, loop=loop)

        self._frame: Image.Image | None = None
        self._frame_time: float | None = None
        logger.debug(
            f"Opened video {self.path.name}: {self.width}x{self.height} "
            f"@ {self.fps:.2f}fps, {self.duration:.2f}s"
        )

    async def _seek(self, target: float) -> None:
        await asyncio.to_thread(self._decode_at, target)

    def _decode_at(self, target: float) -> None:
        with self._lock:
            if self._cap is None:
                return
            self._cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, target) * 1000)
            self._read_frame(target)

    def _read_frame(self, position: float) -> bool:
        ret, frame = self._cap.read()
        if not ret:
            return False
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        self._frame = Image.fromarray(rgb)
        self._frame_time = position
        return True

    def frame(self) -> Image.Image | None:
        """Frame at ``current_time``, decoding forward when playback has moved on."""
        if self._frame_time is not None:
            drift = self.current_time - self._frame_time
            if 0 <= drift < 1.0 / self.fps:
                return self._frame
        with self._lock:
            if self._cap is None:
                return self._frame
            if self._frame_time is not None and 0 < self.current_time - self._frame_time < 1.0:
                # Sequential reads are cheaper than a seek for small steps
                position = self._frame_time
                while position + 1.0 / self.fps <= self.current_time:
                    position += 1.0 / self.fps
                    if not self._read_frame(position):
                        break
            else:
                self._cap.set(cv2.CAP_PROP_POS_MSEC, self.current_time * 1000)
                self._read_frame(self.current_time)
        return self._frame

    def release(self) -> None:
        super().release()
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
        self._frame = None
        self.audio = None


MediaHandle = ImageSource | TimedMedia


class MediaHandles:
    """Loaded media keyed by role.

    Well-known keys are the class constants; slides are stored under
    ``slide:<id>``. A missing key means the asset is absent.
    """

    COVER = "cover"
    BACKGROUND = "background"
    BACKGROUND_IMAGE = "background_image"
    CHANNEL = "channel"

    def __init__(self):
        self._handles: dict[str, MediaHandle] = {}

    @staticmethod
    def slide_key(slide_id: str) -> str:
        return f"slide:{slide_id}"

    def set(self, key: str, handle: MediaHandle) -> None:
        self._handles[key] = handle

    def get(self, key: str) -> MediaHandle | None:
        return self._handles.get(key)

    def pop(self, key: str) -> MediaHandle | None:
        return self._handles.pop(key, None)

    def slide(self, slide_id: str) -> MediaHandle | None:
        return self._handles.get(self.slide_key(slide_id))

    def keys(self) -> list[str]:
        return list(self._handles)

    def timed(self) -> list[TimedMedia]:
        return [h for h in self._handles.values() if isinstance(h, TimedMedia)]

    def __contains__(self, key: str) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)
