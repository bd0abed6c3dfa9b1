"""Track, playlist and project data structures."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from lyric_video.core.exceptions import ConfigError
from lyric_video.models.lyrics import LyricLine
from lyric_video.models.render_config import RenderConfig, VideoPreset
from lyric_video.models.slide import Slide
from lyric_video.models.task import ExportOptions


class AudioMetadata(BaseModel):
    """Song information shown by the title card and info overlay."""

    title: str = Field(default="Unknown Title")
    artist: str = Field(default="Unknown Artist")
    album: str | None = Field(default=None)
    cover_source: str | None = Field(default=None, description="Cover image or background video")
    background_kind: str | None = Field(default=None, description="'image' or 'video'")

    @property
    def has_video_background(self) -> bool:
        return self.cover_source is not None and self.background_kind == "video"


class Track(BaseModel):
    """One song: audio plus its lyrics and metadata."""

    audio_source: str = Field(description="Path to the primary audio")
    lyrics: list[LyricLine] = Field(default_factory=list)
    metadata: AudioMetadata = Field(default_factory=AudioMetadata)


class Project(BaseModel):
    """Everything needed for one export, as loaded from a project file."""

    tracks: list[Track] = Field(min_length=1)
    slides: list[Slide] = Field(default_factory=list)
    preset: VideoPreset = Field(default=VideoPreset.DEFAULT)
    render: RenderConfig = Field(default_factory=RenderConfig)
    export: ExportOptions = Field(default_factory=ExportOptions)

    @classmethod
    def from_yaml(cls, path: Path) -> "Project":
        """Load a project file. Relative media paths resolve against its directory."""
        if not path.exists():
            raise ConfigError(f"Project file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        try:
            project = cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid project file {path}: {e}")
        return project.resolve_paths(path.parent)

    def resolve_paths(self, base: Path) -> "Project":
        def resolve(source: str | None) -> str | None:
            if not source or "://" in source or Path(source).is_absolute():
                return source
            return str(base / source)

        tracks = [
            t.model_copy(
                update={
                    "audio_source": resolve(t.audio_source),
                    "metadata": t.metadata.model_copy(update={"cover_source": resolve(t.metadata.cover_source)}),
                }
            )
            for t in self.tracks
        ]
        slides = [s.model_copy(update={"source": resolve(s.source)}) for s in self.slides]
        render = self.render.model_copy(
            update={
                "background_image": resolve(self.render.background_image),
                "channel_info_image": resolve(self.render.channel_info_image),
            }
        )
        return self.model_copy(update={"tracks": tracks, "slides": slides, "render": render})
