"""Tunable constants of the podcast assembly engine.

The values were tuned by ear and by eye; they are defaults, not fixed rules. An
``AssemblyConfig`` can be loaded from a JSON file to override any of them.
"""

from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, model_validator


class TimingConfig(BaseModel):
    """Reading-speed heuristics used before real audio durations are known.

    Attributes:
        strategy: ``words`` (words per second) or ``chars`` (characters per second)
        words_per_second: Average narration speed for the word-rate estimator
        chars_per_second: Average reading speed for the character-rate estimator
        min_line_duration: Floor applied to every spoken line
        inter_line_pause: Pause added after every spoken line
        sfx_anticipation: How much earlier than its anchor a sound effect starts
    """

    strategy: Literal["words", "chars"] = "words"
    words_per_second: float = Field(default=2.5, gt=0)
    chars_per_second: float = Field(default=15.0, gt=0)
    min_line_duration: float = Field(default=1.0, gt=0)
    inter_line_pause: float = Field(default=0.5, ge=0)
    sfx_anticipation: float = Field(default=0.2, ge=0)


class MixConfig(BaseModel):
    """Gains and envelopes of the audio mixer."""

    crossfade_seconds: float = Field(default=1.5, ge=0)
    atmospheric_sfx_volume: float = Field(default=0.2, ge=0)
    sudden_sfx_volume: float = Field(default=0.4, ge=0)
    sudden_keywords: List[str] = Field(default_factory=lambda: ["sudden", "loud", "crash", "bang"])
    max_sfx_duration: float | None = Field(default=None, gt=0)
    sfx_fade_out: float = Field(default=1.0, ge=0)
    mp3_bitrate: str = "192k"

    def sfx_volume_for(self, effect_name: str) -> float:
        name = effect_name.lower()
        if any(keyword in name for keyword in self.sudden_keywords):
            return self.sudden_sfx_volume
        return self.atmospheric_sfx_volume


class SubtitleConfig(BaseModel):
    mode: Literal["precise", "estimated"] = "precise"
    min_cue_duration: float = Field(default=0.5, gt=0)
    chars_per_second: float = Field(default=15.0, gt=0)
    min_chunk_duration: float = Field(default=1.0, gt=0)
    wrap: bool = True
    max_line_length: int = Field(default=42, gt=0)
    max_lines: int = Field(default=2, gt=0)
    byte_order_mark: bool = True


class PacingConfig(BaseModel):
    min_image_duration: float = Field(default=4.0, gt=0)
    max_image_duration: float = Field(default=15.0, gt=0)

    @model_validator(mode="after")
    def _check_band(self) -> "PacingConfig":
        if self.max_image_duration < 2 * self.min_image_duration:
            raise ValueError("max_image_duration must be at least twice min_image_duration")
        return self


class RenderConfig(BaseModel):
    """Video geometry, Ken Burns motion and subtitle styling of the render plan."""

    width: int = 1280
    height: int = 720
    fps: int = 30
    zoom_increment: float = 0.001
    max_zoom: float = 1.1
    subtitle_file: str = "subtitles.srt"
    font_name: str = "Inter"
    font_size: int = 32
    primary_colour: str = "&HFFFFFF&"
    outline_colour: str = "&H000000&"
    border_style: int = 3
    outline: int = 4
    shadow: int = 2
    video_args: List[str] = Field(default_factory=lambda: ["-c:v", "libx264", "-preset", "fast", "-pix_fmt", "yuv420p"])
    audio_args: List[str] = Field(default_factory=lambda: ["-c:a", "aac", "-b:a", "192k"])

    @property
    def force_style(self) -> str:
        return (
            f"FontName={self.font_name},FontSize={self.font_size},"
            f"PrimaryColour={self.primary_colour},OutlineColour={self.outline_colour},"
            f"BorderStyle={self.border_style},Outline={self.outline},Shadow={self.shadow}"
        )


class AssemblyConfig(BaseModel):
    timing: TimingConfig = Field(default_factory=TimingConfig)
    mix: MixConfig = Field(default_factory=MixConfig)
    subtitles: SubtitleConfig = Field(default_factory=SubtitleConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "AssemblyConfig":
        """Load a config from a JSON file, or return the defaults when ``path`` is None."""
        if path is None:
            return cls()
        with open(path, encoding="utf-8") as f:
            return cls.model_validate_json(f.read())
