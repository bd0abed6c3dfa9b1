"""Time-ranged overlay slides."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SlideKind = Literal["image", "video", "audio"]


class Slide(BaseModel):
    """A visual or audio overlay active over [start_time, end_time)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique slide identifier")
    kind: SlideKind = Field(description="Media kind")
    source: str = Field(description="Path or URL of the media")
    start_time: float = Field(ge=0, description="Start time in seconds")
    end_time: float = Field(description="End time in seconds (exclusive)")
    name: str = Field(default="", description="Display name")
    layer: int = Field(default=0, description="Stacking layer; higher draws on top")
    muted: bool | None = Field(default=None, description="Mute flag (None = kind default)")
    volume: float = Field(default=1.0, ge=0, le=1, description="Playback volume")
    media_start_offset: float = Field(default=0.0, ge=0, description="Offset into the media")
    playback_rate: float = Field(default=1.0, ge=0.1, le=4, description="Playback speed")
    media_duration: float | None = Field(default=None, description="Duration of the media itself")

    @model_validator(mode="after")
    def check_range(self) -> "Slide":
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Slide {self.id}: end_time ({self.end_time}) must be greater than "
                f"start_time ({self.start_time})"
            )
        return self

    @property
    def is_visual(self) -> bool:
        return self.kind != "audio"

    @property
    def is_muted(self) -> bool:
        """Video slides are silent unless explicitly unmuted; audio slides are audible."""
        if self.muted is None:
            return self.kind == "video"
        return self.muted

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def contains(self, time: float) -> bool:
        return self.start_time <= time < self.end_time


def active_visual_slide(
    slides: list[Slide],
    time: float,
    visible_layers: dict[int, bool] | None = None,
) -> Slide | None:
    """Highest-layer visual slide containing ``time``; later slides win ties."""
    best: Slide | None = None
    for slide in slides:
        if not slide.is_visual or not slide.contains(time):
            continue
        if visible_layers is not None and not visible_layers.get(slide.layer, True):
            continue
        if best is None or slide.layer >= best.layer:
            best = slide
    return best


def previous_visual_slide(
    slides: list[Slide],
    current: Slide,
    visible_layers: dict[int, bool] | None = None,
) -> Slide | None:
    """The visual slide showing just before ``current`` started, if any."""
    return active_visual_slide(
        [s for s in slides if s.id != current.id],
        current.start_time - 1e-6,
        visible_layers,
    )
