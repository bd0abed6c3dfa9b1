"""FFmpeg command wrapper utilities."""

import asyncio
import json
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from lyric_video.core.exceptions import EncoderConfigurationUnsupported, EncoderRuntimeError

if TYPE_CHECKING:
    from lyric_video.encode.codecs import CodecSpec


class FFmpegWrapper:
    """Wrapper for FFmpeg commands."""

    def __init__(self, ffmpeg_path: str | None = None, ffprobe_path: str | None = None):
        """Initialize FFmpeg wrapper."""
        self.ffmpeg_path = shutil.which(ffmpeg_path or "ffmpeg")
        self.ffprobe_path = shutil.which(ffprobe_path or "ffprobe")

        if not self.ffmpeg_path:
            raise EncoderConfigurationUnsupported(f"FFmpeg not found: {ffmpeg_path or 'PATH'}")
        if not self.ffprobe_path:
            raise EncoderConfigurationUnsupported(f"FFprobe not found: {ffprobe_path or 'PATH'}")

    async def list_encoders(self) -> set[str]:
        """
        List the encoder names compiled into this ffmpeg build.

        Returns:
            Encoder names such as "libx264" or "aac"
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-encoders"]
        stdout = await self._run_command(cmd, "Encoder probe")

        encoders = set()
        for line in stdout.decode(errors="replace").splitlines():
            # " V....D libx264   libx264 H.264 / AVC ..."
            match = re.match(r"^\s*[VAS][A-Z.]{5}\s+(\S+)", line)
            if match:
                encoders.add(match.group(1))
        return encoders

    async def get_duration(self, media_path: Path) -> float:
        """
        Get media duration in seconds.

        Args:
            media_path: Path to audio or video file

        Returns:
            Duration in seconds
        """
        cmd = [
            self.ffprobe_path,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            str(media_path),
        ]

        stdout = await self._run_command(cmd, "Duration probe")
        try:
            data = json.loads(stdout.decode())
            return float(data["format"]["duration"])
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise EncoderRuntimeError(f"Failed to parse media duration: {e}", stage="probe")

    async def extract_audio(
        self,
        media_path: Path,
        output_path: Path,
        sample_rate: int = 44100,
        channels: int = 2,
    ) -> Path:
        """
        Extract or transcode an audio stream to 16-bit PCM WAV.

        Args:
            media_path: Input audio or video path
            output_path: Output WAV path
            sample_rate: Audio sample rate
            channels: Output channel count

        Returns:
            Output audio path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i",
            str(media_path),
            "-vn",
            "-acodec",
            "pcm_s16le",
            "-ar",
            str(sample_rate),
            "-ac",
            str(channels),
            str(output_path),
        ]

        await self._run_command(cmd, "Audio extraction")
        return output_path

    def raw_video_input_args(self, width: int, height: int, fps: int) -> list[str]:
        """Input arguments for raw RGB24 frames arriving on stdin."""
        return [
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgb24",
            "-s",
            f"{width}x{height}",
            "-r",
            str(fps),
            "-i",
            "pipe:0",
        ]

    def video_output_args(self, spec: "CodecSpec", fps: int, keyframe_times: str | None = None) -> list[str]:
        """Video encoder arguments for a codec spec."""
        args = ["-c:v", spec.encoder, *spec.args, "-pix_fmt", spec.pix_fmt, "-r", str(fps)]
        if keyframe_times:
            args.extend(["-force_key_frames", keyframe_times])
        return args

    async def open_frame_pipe(
        self,
        width: int,
        height: int,
        fps: int,
        spec: "CodecSpec",
        output_path: Path,
        keyframe_interval: float,
    ) -> asyncio.subprocess.Process:
        """
        Start an ffmpeg process that encodes raw frames from stdin to a video-only file.

        Args:
            width: Frame width
            height: Frame height
            fps: Frame rate of the incoming stream
            spec: Codec parameters
            output_path: Video-only output path
            keyframe_interval: Seconds between forced keyframes

        Returns:
            The running process (stdin open for frames)
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-loglevel",
            "error",
            *self.raw_video_input_args(width, height, fps),
            "-an",
            *self.video_output_args(
                spec, fps, keyframe_times=f"expr:gte(t,n_forced*{keyframe_interval})"
            ),
            str(output_path),
        ]

        logger.debug(f"Opening frame pipe: {' '.join(cmd)}")
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def encode_image_sequence(
        self,
        pattern: Path,
        fps: int,
        spec: "CodecSpec",
        output_path: Path,
        keyframe_times: list[float] | None = None,
    ) -> Path:
        """
        Encode a numbered image sequence to a video-only file.

        Args:
            pattern: printf-style frame path, e.g. frames/frame_%06d.jpg
            fps: Frame rate
            spec: Codec parameters
            output_path: Video-only output path
            keyframe_times: Explicit keyframe timestamps in seconds

        Returns:
            Output video path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        forced = ",".join(f"{t:.6f}" for t in keyframe_times) if keyframe_times else None
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-framerate",
            str(fps),
            "-i",
            str(pattern),
            "-an",
            *self.video_output_args(spec, fps, keyframe_times=forced),
            str(output_path),
        ]

        await self._run_command(cmd, "Image sequence encoding")
        return output_path

    async def mux(
        self,
        video_path: Path,
        audio_path: Path,
        output_path: Path,
        spec: "CodecSpec",
        audio_bitrate: str = "192k",
        sample_rate: int = 44100,
    ) -> Path:
        """
        Mux an encoded video stream with PCM audio into the final container.

        Args:
            video_path: Encoded video-only file
            audio_path: WAV soundtrack
            output_path: Output container path
            spec: Codec parameters (container and audio encoder)
            audio_bitrate: Audio bitrate
            sample_rate: Output sample rate

        Returns:
            Output container path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i",
            str(video_path),
            "-i",
            str(audio_path),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c:v",
            "copy",
            "-c:a",
            spec.audio_encoder,
            "-b:a",
            audio_bitrate,
            "-ar",
            str(sample_rate),
            "-ac",
            "2",
        ]
        if spec.container == "mp4":
            cmd.extend(["-movflags", "+faststart"])
        cmd.append(str(output_path))

        await self._run_command(cmd, "Muxing")
        return output_path

    async def _run_command(self, cmd: list[str], operation: str) -> bytes:
        """Run FFmpeg command."""
        logger.debug(f"Running {operation}: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            error_msg = stderr.decode(errors="replace") if stderr else "Unknown error"
            logger.error(f"{operation} failed: {error_msg}")
            raise EncoderRuntimeError(f"{operation} failed: {error_msg}", stage=operation)

        logger.debug(f"{operation} completed successfully")
        return stdout
