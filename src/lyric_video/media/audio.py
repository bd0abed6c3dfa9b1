"""Audio decoding and the mix graph."""

import asyncio
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import soundfile as sf
from loguru import logger

from lyric_video.core.exceptions import AudioDecodeError, EncoderRuntimeError
from lyric_video.utils.ffmpeg import FFmpegWrapper


@dataclass
class DecodedAudio:
    """PCM audio as float32 samples of shape (frames, channels)."""

    samples: np.ndarray
    sample_rate: int

    @classmethod
    def silence(cls, duration: float, sample_rate: int, channels: int = 2) -> "DecodedAudio":
        frames = max(0, round(duration * sample_rate))
        return cls(np.zeros((frames, channels), dtype=np.float32), sample_rate)

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0

    def chunk(self, start: int, count: int) -> np.ndarray:
        """Samples [start, start + count), zero-padded past the end."""
        out = np.zeros((count, self.channels), dtype=np.float32)
        available = self.samples[start : start + count]
        out[: available.shape[0]] = available
        return out

    def padded_to(self, frames: int) -> "DecodedAudio":
        if frames <= self.frames:
            return self
        return DecodedAudio(self.chunk(0, frames), self.sample_rate)


def _to_stereo(samples: np.ndarray, channels: int) -> np.ndarray:
    if samples.shape[1] == channels:
        return samples
    if samples.shape[1] == 1:
        return np.repeat(samples, channels, axis=1)
    return samples[:, :channels]


async def decode_audio(
    path: Path,
    sample_rate: int,
    ffmpeg: FFmpegWrapper | None = None,
    temp_dir: Path | None = None,
    channels: int = 2,
) -> DecodedAudio:
    """
    Fully decode an audio (or video) file at a target sample rate.

    Formats libsndfile reads at the right rate are decoded directly;
    everything else goes through an ffmpeg transcode to WAV first.

    Args:
        path: Media path
        sample_rate: Target sample rate
        ffmpeg: FFmpeg wrapper used for transcoding
        temp_dir: Directory for the intermediate WAV
        channels: Output channel count

    Returns:
        DecodedAudio

    Raises:
        AudioDecodeError: the file could not be decoded
    """
    path = Path(path)
    if not path.exists():
        raise AudioDecodeError(f"Audio file not found: {path}")

    try:
        samples, rate = await asyncio.to_thread(sf.read, str(path), dtype="float32", always_2d=True)
        if rate == sample_rate and samples.shape[0] > 0:
            return DecodedAudio(_to_stereo(samples, channels), rate)
        logger.debug(f"{path.name}: {rate}Hz needs resampling to {sample_rate}Hz")
    except RuntimeError as e:
        logger.debug(f"libsndfile cannot read {path.name} ({e}), transcoding with ffmpeg")

    if ffmpeg is None or temp_dir is None:
        raise AudioDecodeError(f"Cannot decode {path} without an ffmpeg runtime")

    wav_path = temp_dir / f"{path.stem}_{abs(hash(str(path))) % 10**8}.wav"
    try:
        await ffmpeg.extract_audio(path, wav_path, sample_rate=sample_rate, channels=channels)
        samples, rate = await asyncio.to_thread(
            sf.read, str(wav_path), dtype="float32", always_2d=True
        )
    except (EncoderRuntimeError, RuntimeError) as e:
        raise AudioDecodeError(f"Failed to decode audio {path}: {e}")
    finally:
        wav_path.unlink(missing_ok=True)

    if samples.shape[0] == 0:
        raise AudioDecodeError(f"Audio file has no samples: {path}")

    return DecodedAudio(_to_stereo(samples, channels), rate)


@dataclass
class MixNode:
    """One source placed on the output timeline."""

    key: str
    audio: DecodedAudio
    volume: float = 1.0
    start_time: float = 0.0
    end_time: float | None = None
    media_offset: float = 0.0
    playback_rate: float = 1.0
    loop: bool = False


class AudioMixGraph:
    """Sources routed into a single mix destination.

    Nodes carry their own timeline placement so the destination can be
    rendered at any point with :meth:`mixdown`.
    """

    def __init__(self, sample_rate: int = 44100, channels: int = 2):
        self.sample_rate = sample_rate
        self.channels = channels
        self._nodes: dict[str, MixNode] = {}
        self._released = False

    @property
    def connected(self) -> list[str]:
        return list(self._nodes)

    @property
    def released(self) -> bool:
        return self._released

    def is_connected(self, key: str) -> bool:
        return key in self._nodes

    def connect(
        self,
        key: str,
        audio: DecodedAudio,
        volume: float = 1.0,
        start_time: float = 0.0,
        end_time: float | None = None,
        media_offset: float = 0.0,
        playback_rate: float = 1.0,
        loop: bool = False,
    ) -> MixNode:
        """Route a source into the mix. Reconnecting an existing key updates its volume."""
        if self._released:
            raise RuntimeError("Audio mix graph already released")
        if key in self._nodes:
            self._nodes[key].volume = volume
            return self._nodes[key]
        if audio.sample_rate != self.sample_rate:
            raise ValueError(
                f"Source {key} is {audio.sample_rate}Hz, mix destination is {self.sample_rate}Hz"
            )
        node = MixNode(
            key=key,
            audio=audio,
            volume=volume,
            start_time=start_time,
            end_time=end_time,
            media_offset=media_offset,
            playback_rate=playback_rate,
            loop=loop,
        )
        self._nodes[key] = node
        logger.debug(f"Mix graph: connected {key} (volume={volume:.2f})")
        return node

    def disconnect(self, key: str) -> bool:
        node = self._nodes.pop(key, None)
        if node is not None:
            logger.debug(f"Mix graph: disconnected {key}")
        return node is not None

    def set_volume(self, key: str, volume: float) -> None:
        if key in self._nodes:
            self._nodes[key].volume = volume

    def release(self) -> None:
        self._nodes.clear()
        self._released = True

    def mixdown(self, duration: float) -> DecodedAudio:
        """Render the destination over [0, duration)."""
        total = max(0, round(duration * self.sample_rate))
        out = np.zeros((total, self.channels), dtype=np.float32)

        for node in self._nodes.values():
            source = node.audio
            if source.frames == 0 or node.volume <= 0:
                continue
            end = duration if node.end_time is None else min(node.end_time, duration)
            first = max(0, round(node.start_time * self.sample_rate))
            last = min(total, round(end * self.sample_rate))
            if last <= first:
                continue

            timeline = np.arange(first, last) / self.sample_rate
            local = (timeline - node.start_time) * node.playback_rate + node.media_offset
            index = np.floor(local * source.sample_rate).astype(np.int64)
            if node.loop:
                index %= source.frames
                valid = np.ones(index.shape[0], dtype=bool)
            else:
                valid = (index >= 0) & (index < source.frames)

            samples = _to_stereo(source.samples, self.channels)
            out[first:last][valid] += samples[index[valid]] * node.volume

        np.clip(out, -1.0, 1.0, out=out)
        return DecodedAudio(out, self.sample_rate)
