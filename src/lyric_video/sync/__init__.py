"""Auxiliary media synchronization."""

from lyric_video.sync.synchronizer import MediaSynchronizer, background_target_time, target_media_time

__all__ = [
    "MediaSynchronizer",
    "target_media_time",
    "background_target_time",
]
