"""Pytest configuration and shared fixtures."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pytest
import soundfile as sf
from PIL import Image

from lyric_video.core.config import ExportSettings, PathSettings, Settings, SyncSettings
from lyric_video.encode.base import EncodeBackend
from lyric_video.media.sources import TimedMedia
from lyric_video.models.lyrics import LyricLine, Word


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with temporary directories."""
    return Settings(
        export=ExportSettings(fps=10, resolution="720p", aspect_ratio="16:9", quality="low"),
        sync=SyncSettings(seek_timeout=0.2, load_timeout=2.0),
        paths=PathSettings(
            output_dir=temp_dir / "output",
            temp_dir=temp_dir / "temp",
        ),
        debug=False,
    )


def write_tone(path: Path, duration: float, sample_rate: int = 44100, freq: float = 440.0) -> Path:
    frames = round(duration * sample_rate)
    t = np.arange(frames) / sample_rate
    mono = 0.2 * np.sin(2 * np.pi * freq * t)
    sf.write(str(path), np.stack([mono, mono], axis=1).astype(np.float32), sample_rate)
    return path


@pytest.fixture
def tone_path(temp_dir: Path) -> Path:
    """2.05 秒的立体声正弦波 WAV"""
    return write_tone(temp_dir / "tone.wav", 2.05)


@pytest.fixture
def sample_lines() -> list[LyricLine]:
    """A 在 [0, 4)，B 从 4 开始且没有结束时间"""
    return [
        LyricLine(start_time=0.0, end_time=4.0, text="Line A"),
        LyricLine(start_time=4.0, text="Line B"),
    ]


@pytest.fixture
def karaoke_line() -> LyricLine:
    return LyricLine(
        start_time=1.0,
        end_time=3.0,
        text="hello lyric world",
        words=[
            Word(text="hello", start_time=1.0, end_time=1.5),
            Word(text="lyric", start_time=1.5, end_time=2.2),
            Word(text="world", start_time=2.2, end_time=2.2),
        ],
    )


class FakeVideo(TimedMedia):
    """Seekable source that records every seek and the position of every drawn frame."""

    kind = "video"

    def __init__(self, key: str, duration: float, color=(200, 40, 40), loop: bool = False):
        super().__init__(key, duration, loop=loop)
        self.color = color
        self.seeks: list[float] = []
        self.drawn_at: list[float] = []

    async def _seek(self, target: float) -> None:
        self.seeks.append(target)

    def frame(self) -> Image.Image:
        self.drawn_at.append(self.current_time)
        return Image.new("RGB", (64, 36), self.color)


class FakeRuntime:
    """Encoder runtime stand-in for exports that never reach ffmpeg."""

    def __init__(self):
        self.checked = []

    @property
    def ffmpeg(self):
        return None

    async def ensure_loaded(self):
        return None

    async def check_codec(self, spec) -> None:
        self.checked.append(spec.codec)


class RecordingBackend(EncodeBackend):
    """Backend that keeps submitted timestamps and writes a placeholder container."""

    name = "recording"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.video_timestamps: list[int] = []
        self.key_frames: list[int] = []
        self.audio_timestamps: list[int] = []
        self.tracks_begun: list[int] = []
        self.abort_calls = 0

    async def _open(self) -> None:
        pass

    async def begin_track(self, index: int) -> None:
        self.tracks_begun.append(index)

    async def encode_video_frame(self, image, timestamp_us: int, key_frame: bool) -> None:
        self.video_timestamps.append(timestamp_us)
        if key_frame:
            self.key_frames.append(timestamp_us)

    async def encode_audio_chunk(self, samples, timestamp_us: int) -> None:
        self.audio_timestamps.append(timestamp_us)
        await super().encode_audio_chunk(samples, timestamp_us)

    @property
    def video_queue_size(self) -> int:
        return 0

    async def _flush_video(self) -> None:
        pass

    async def _finish_video(self) -> Path:
        return self.temp_dir / "video.mp4"

    async def finalize(self, output_path: Path) -> Path:
        await self.flush()
        await self.audio.close()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"RECORDED")
        self._finished = True
        return output_path

    async def abort(self) -> None:
        self.abort_calls += 1
        await super().abort()

    async def _abort_video(self) -> None:
        pass


@pytest.fixture
def recording_factory():
    """Backend factory that remembers every backend it created."""
    created: list[RecordingBackend] = []

    def factory(name, runtime, settings, temp_dir, token):
        backend = RecordingBackend(runtime, settings, temp_dir, token)
        created.append(backend)
        return backend

    factory.created = created
    return factory
