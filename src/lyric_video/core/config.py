"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Quality = Literal["low", "med", "high"]
Resolution = Literal["720p", "1080p"]
AspectRatio = Literal["16:9", "9:16", "3:4", "1:1", "1:2", "2:1", "2:3", "3:2"]
BackendName = Literal["auto", "pipe", "sequence", "live"]


class ExportSettings(BaseSettings):
    """Export / encoding configuration."""

    model_config = SettingsConfigDict(env_prefix="EXPORT_")

    fps: int = Field(default=30, ge=1, le=120, description="Target frame rate")
    quality: Quality = Field(default="med", description="Quality tier")
    resolution: Resolution = Field(default="1080p", description="Output resolution class")
    aspect_ratio: AspectRatio = Field(default="16:9", description="Output aspect ratio")
    codec: str | None = Field(default=None, description="Explicit codec (h264, h265, vp9, av1)")
    backend: BackendName = Field(default="auto", description="Encode backend")

    keyframe_interval: float = Field(default=2.0, gt=0, description="Seconds between forced keyframes")
    audio_chunk_seconds: float = Field(default=1.0, gt=0, description="Audio chunk duration")
    backpressure_threshold: int = Field(
        default=4, ge=1, description="Max queued items per encoder before frame submission yields"
    )
    audio_sample_rate: int = Field(default=44100, description="Output audio sample rate")
    audio_bitrate: str = Field(default="192k", description="Output AAC bitrate")
    jpeg_quality: dict[str, int] = Field(
        default={"low": 85, "med": 92, "high": 98},
        description="JPEG quality per tier for the image sequence backend",
    )
    mix_slide_audio: bool = Field(
        default=True, description="Mix audible slide audio into the exported soundtrack"
    )


class SyncSettings(BaseSettings):
    """Auxiliary media synchronization configuration."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    seek_timeout: float = Field(default=0.5, gt=0, description="Exact-mode seek wait bound")
    exact_tolerance: float = Field(default=0.001, ge=0, description="Exact-mode seek threshold")
    live_background_tolerance: float = Field(
        default=1.0, ge=0, description="Live drift band for looping backgrounds"
    )
    live_overlay_tolerance: float = Field(
        default=0.5, ge=0, description="Live drift band for slide overlays"
    )
    load_timeout: float = Field(default=10.0, gt=0, description="Per-asset load timeout")


class PathSettings(BaseSettings):
    """Path configuration."""

    model_config = SettingsConfigDict(env_prefix="PATH_")

    output_dir: Path = Field(default=Path("data/output"), description="Output directory")
    temp_dir: Path = Field(default=Path("data/temp"), description="Temp directory")

    def ensure_dirs(self) -> None:
        """Create directories if they don't exist."""
        for dir_path in [self.output_dir, self.temp_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LYRIC_VIDEO_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Sub-configurations
    export: ExportSettings = Field(default_factory=ExportSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    paths: PathSettings = Field(default_factory=PathSettings)

    # Encoder runtime
    ffmpeg_path: str | None = Field(default=None, description="ffmpeg binary (PATH lookup if unset)")
    ffprobe_path: str | None = Field(default=None, description="ffprobe binary (PATH lookup if unset)")

    # Font family name -> font file path
    fonts: dict[str, Path] = Field(default_factory=dict, description="Font files by family name")

    # Debug settings
    debug: bool = Field(default=False, description="Enable debug mode")

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "Settings":
        """Load settings from YAML file."""
        if not yaml_path.exists():
            return cls()

        with open(yaml_path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}

        return cls(**config_dict)

    def to_yaml(self, yaml_path: Path) -> None:
        """Save settings to YAML file."""
        yaml_path.parent.mkdir(parents=True, exist_ok=True)
        with open(yaml_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                allow_unicode=True,
            )

    @field_validator("fonts", mode="before")
    @classmethod
    def validate_fonts(cls, v):
        """Accept plain strings as font paths."""
        if isinstance(v, dict):
            return {name: Path(path) for name, path in v.items()}
        return v


@lru_cache()
def get_settings(config_path: str | None = None) -> Settings:
    """Get cached settings instance."""
    if config_path:
        return Settings.from_yaml(Path(config_path))

    # Try default config paths
    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".config" / "lyric-video" / "config.yaml",
    ]

    for path in default_paths:
        if path.exists():
            return Settings.from_yaml(path)

    return Settings()
