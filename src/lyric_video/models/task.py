"""Export state and progress data structures."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field


class ExportState(str, Enum):
    """Export orchestrator state."""

    IDLE = "idle"
    PRELOADING = "preloading"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportState.DONE, ExportState.ABORTED, ExportState.FAILED)


class ExportProgress(BaseModel):
    """Export progress information."""

    state: ExportState = Field(default=ExportState.IDLE)
    track_index: int = Field(default=0, ge=0, description="Index of the track being encoded")
    total_tracks: int = Field(default=1, ge=1, description="Number of tracks in the export")
    progress: float = Field(default=0.0, ge=0, le=100, description="Track progress percentage")
    overall: float = Field(default=0.0, ge=0, le=1, description="Overall fraction across tracks")
    stage: str = Field(default="Idle", min_length=1, description="Stage label")
    started_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    def update(
        self,
        state: ExportState | None = None,
        track_index: int | None = None,
        progress: float | None = None,
        stage: str | None = None,
    ) -> "ExportProgress":
        """Update progress and return new instance."""
        track_index = track_index if track_index is not None else self.track_index
        progress = progress if progress is not None else self.progress
        return ExportProgress(
            state=state if state is not None else self.state,
            track_index=track_index,
            total_tracks=self.total_tracks,
            progress=progress,
            overall=min(1.0, (track_index + progress / 100) / self.total_tracks),
            stage=stage if stage else self.stage,
            started_at=self.started_at,
            updated_at=datetime.now(),
        )


class ExportResult(BaseModel):
    """Result of an export."""

    success: bool = Field(description="Whether the export succeeded")
    data: bytes = Field(default=b"", description="Encoded container bytes")
    format: str = Field(default="mp4", description="Container format tag")
    duration: float = Field(default=0.0, description="Media duration in seconds")
    frame_count: int = Field(default=0, description="Number of encoded video frames")
    output_path: Path | None = Field(default=None, description="Where the container was written")
    elapsed: float = Field(default=0.0, description="Wall time spent exporting")

    aborted: bool = Field(default=False, description="True when the export was cancelled")
    error_kind: str | None = Field(default=None, description="Exception class name on failure")
    error_stage: str | None = Field(default=None, description="Stage that failed")
    error_message: str | None = Field(default=None, description="Error message if failed")


class ExportOptions(BaseModel):
    """Per-export overrides; unset fields fall back to ExportSettings."""

    resolution: Literal["720p", "1080p"] | None = Field(default=None)
    aspect_ratio: Literal["16:9", "9:16", "3:4", "1:1", "1:2", "2:1", "2:3", "3:2"] | None = Field(default=None)
    fps: int | None = Field(default=None, ge=1, le=120)
    quality: Literal["low", "med", "high"] | None = Field(default=None)
    codec: str | None = Field(default=None, description="h264, h265, vp9 or av1")
    backend: Literal["auto", "pipe", "sequence", "live"] | None = Field(default=None)
    font_name: str | None = Field(default=None, description="Font family override")
    font_scale: float = Field(default=1.0, gt=0)
    blur: bool = Field(default=False, description="Blur the background")
    lyric_offset: float = Field(default=0.0, description="Seconds added to every lyric timestamp")
    output_path: Path | None = Field(default=None)

    def with_defaults(self, defaults: Any) -> "ExportOptions":
        """Fill unset encode fields from an ExportSettings instance."""
        values = self.model_dump()
        for name in ("resolution", "aspect_ratio", "fps", "quality", "codec", "backend"):
            if values[name] is None:
                values[name] = getattr(defaults, name)
        return ExportOptions(**values)

    @property
    def backend_name(self) -> str:
        """Concrete backend; "auto" picks the raw-frame pipe."""
        return "pipe" if self.backend in (None, "auto") else self.backend
