"""Time and frame calculation utilities."""

import math
from datetime import timedelta

MICROSECONDS = 1_000_000


class TimeUtils:
    """Utility class for time calculations."""

    @staticmethod
    def frame_count(duration: float, fps: int) -> int:
        """
        Number of frames needed to cover a duration.

        Args:
            duration: Duration in seconds
            fps: Frames per second

        Returns:
            ceil(duration * fps), ignoring float noise below a microsecond
        """
        if duration <= 0:
            return 0
        return math.ceil(duration * fps - 1e-6)

    @staticmethod
    def frame_time(frame: int, fps: int) -> float:
        """Timestamp in seconds of a frame index."""
        return frame / fps

    @staticmethod
    def frame_timestamp_us(frame: int, fps: int, origin_us: int = 0) -> int:
        """
        Integer microsecond timestamp of a frame.

        Args:
            frame: Frame index within the track
            fps: Frames per second
            origin_us: Timestamp origin of the track in microseconds

        Returns:
            origin_us + round(frame * 1e6 / fps)
        """
        return origin_us + round(frame * MICROSECONDS / fps)

    @staticmethod
    def samples_to_us(samples: int, sample_rate: int) -> int:
        """Integer microsecond timestamp of a sample offset."""
        return round(samples * MICROSECONDS / sample_rate)

    @staticmethod
    def is_keyframe(frame: int, fps: int, interval: float) -> bool:
        """Whether a frame index falls on the forced keyframe grid."""
        step = max(1, round(fps * interval))
        return frame % step == 0

    @staticmethod
    def seconds_to_clock(seconds: float) -> str:
        """
        Convert seconds to a clock string.

        Args:
            seconds: Time in seconds

        Returns:
            Time string in format "HH:MM:SS.mmm"
        """
        if seconds < 0:
            seconds = 0

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)
        millis = int(round((seconds % 1) * 1000)) % 1000
        return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"

    @staticmethod
    def format_duration(seconds: float) -> str:
        """
        Format duration for display.

        Args:
            seconds: Duration in seconds

        Returns:
            Formatted string like "1h 23m 45s" or "23m 45s" or "45s"
        """
        td = timedelta(seconds=int(seconds))
        hours, remainder = divmod(td.seconds, 3600)
        minutes, secs = divmod(remainder, 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"
