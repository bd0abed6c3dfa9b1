"""Lyric video rendering and export."""

__version__ = "0.1.0"
