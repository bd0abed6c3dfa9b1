"""Custom exceptions for lyric-video."""


class LyricVideoError(Exception):
    """Base exception for lyric-video."""

    pass


class ConfigError(LyricVideoError):
    """Configuration related errors."""

    pass


class AssetLoadError(LyricVideoError):
    """A single media asset could not be loaded.

    Absorbed by the loader: the element renders as absent and the export continues.
    """

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class SeekTimeout(LyricVideoError):
    """A media seek did not complete within the bounded wait."""

    def __init__(self, message: str, source_id: str | None = None, target: float | None = None):
        super().__init__(message)
        self.source_id = source_id
        self.target = target


class AudioDecodeError(LyricVideoError):
    """The primary audio could not be decoded. Always fatal."""

    pass


class EncoderConfigurationUnsupported(LyricVideoError):
    """Requested codec/quality cannot be encoded by the available runtime."""

    def __init__(self, message: str, codec: str | None = None):
        super().__init__(message)
        self.codec = codec


class EncoderRuntimeError(LyricVideoError):
    """Encoding failed mid-export."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.stage = stage


class AbortRequested(LyricVideoError):
    """Cooperative cancellation was observed. Never reported as a user-facing error."""

    pass


class ExportInProgressError(LyricVideoError):
    """An export was requested while another one is still running."""

    pass
