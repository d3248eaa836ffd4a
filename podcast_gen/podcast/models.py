"""Data models produced by the podcast assembly engine."""

import shlex
from typing import Dict, List, Literal

from pydantic import BaseModel, Field


class LineTiming(BaseModel):
    """Estimated placement of one script line inside its chapter.

    For SFX lines ``start`` is the anchor time and ``duration`` is zero.
    """

    index: int
    start: float
    duration: float
    is_sfx: bool = False

    @property
    def end(self) -> float:
        return self.start + self.duration


class ChapterSpan(BaseModel):
    """Region of the master timeline occupied by one chapter's speech."""

    chapter_id: str
    title: str = ""
    start: float
    duration: float
    start_frame: int
    frames: int

    @property
    def end(self) -> float:
        return self.start + self.duration


class MusicCue(BaseModel):
    chapter_id: str
    track_id: str
    track_name: str = ""
    start: float
    duration: float
    volume: float
    fade_in: bool
    fade_out: bool
    fade_seconds: float


class SfxEvent(BaseModel):
    """A sound effect scheduled on the master timeline.

    Attributes:
        chapter_id: Chapter containing the SFX line
        line_index: Index of the SFX line in the chapter script
        effect_id: Sound effect identifier
        name: Sound effect name
        start: Start time on the master timeline, in seconds
        duration: Audible duration, in seconds
        gain: Linear gain applied to the effect
        file_name: Relative path of the exported effect, set when the effect is left to the renderer
    """

    chapter_id: str
    line_index: int
    effect_id: int
    name: str = ""
    start: float
    duration: float
    gain: float
    file_name: str | None = None

    @property
    def end(self) -> float:
        return self.start + self.duration


class MixReport(BaseModel):
    """What the mixer placed where, and what it released."""

    sample_rate: int
    channels: int
    frames: int
    chapters: List[ChapterSpan] = Field(default_factory=list)
    music_cues: List[MusicCue] = Field(default_factory=list)
    sfx_events: List[SfxEvent] = Field(default_factory=list)
    sfx_mixed: bool = True
    skipped: List[str] = Field(default_factory=list)
    bytes_freed: int = 0

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate

    def chapter_durations(self) -> Dict[str, float]:
        return {span.chapter_id: span.duration for span in self.chapters}


class SubtitleCue(BaseModel):
    index: int
    start: float
    end: float
    text: str


class ScheduledImage(BaseModel):
    """One slot of the slideshow: which pooled image is shown, from when, for how long."""

    pool_index: int
    file_name: str
    start: float
    duration: float


class RenderInput(BaseModel):
    kind: Literal["image", "audio", "sfx"]
    path: str
    options: List[str] = Field(default_factory=list)

    def args(self) -> List[str]:
        return [*self.options, "-i", self.path]


class FilterStage(BaseModel):
    """One filter chain of a filter graph: ``[in1][in2]filter[out]``."""

    inputs: List[str] = Field(default_factory=list)
    filter: str
    outputs: List[str] = Field(default_factory=list)

    def __str__(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{self.filter}{outs}"


class RenderPlan(BaseModel):
    """Declarative description of the final video render.

    The plan only describes inputs, filter stages and output labels. It is executed by
    an external renderer (see ``synthesizer.render_plan``) or shipped inside the
    package as a shell script.

    Attributes:
        inputs: Renderer inputs in index order (images, then master audio, then SFX)
        stages: Ordered filter stages
        video_output: Label of the final video stream
        audio_output: Label of the final audio stream
        duration: Total runtime in seconds
        schedule: The slideshow the image inputs implement
        output_args: Encoder arguments placed before the output path
    """

    inputs: List[RenderInput]
    stages: List[FilterStage]
    video_output: str = "outv"
    audio_output: str = "outa"
    duration: float
    width: int
    height: int
    fps: int
    schedule: List[ScheduledImage] = Field(default_factory=list)
    output_args: List[str] = Field(default_factory=list)

    def filter_complex(self, separator: str = ";\n") -> str:
        return separator.join(str(stage) for stage in self.stages)

    def command(
        self, output_path: str = "output.mp4", ffmpeg: str = "ffmpeg", filter_script: str | None = None
    ) -> List[str]:
        """Build the renderer command line.

        Args:
            output_path: Video file to produce
            ffmpeg: ffmpeg executable
            filter_script: When set, the filter graph is read from this file instead of
                           being passed inline (long graphs exceed command line limits)
        """
        cmd = [ffmpeg, "-y"]
        for render_input in self.inputs:
            cmd.extend(render_input.args())
        if filter_script:
            cmd.extend(["-filter_complex_script", filter_script])
        else:
            cmd.extend(["-filter_complex", self.filter_complex(separator=";")])
        cmd.extend(["-map", f"[{self.video_output}]", "-map", f"[{self.audio_output}]"])
        cmd.extend(self.output_args)
        cmd.extend(["-t", f"{self.duration:.3f}", output_path])
        return cmd

    def shell_script(self, output_path: str = "output.mp4", filter_script: str = "filter_complex.txt") -> str:
        command = shlex.join(self.command(output_path, filter_script=filter_script))
        return f'#!/bin/sh\nset -e\ncd "$(dirname "$0")"\n{command}\n'


class AssemblyResult(BaseModel):
    """Files and figures produced by one assembly run."""

    title: str
    output_dir: str
    duration: float
    audio_path: str
    subtitle_path: str
    filter_script_path: str
    plan_path: str
    script_path: str
    image_paths: List[str] = Field(default_factory=list)
    sfx_paths: List[str] = Field(default_factory=list)
    package_path: str | None = None
    video_path: str | None = None
    cue_count: int = 0
    bytes_freed: int = 0
    report: MixReport

    @property
    def output_files(self) -> List[str]:
        files = [self.audio_path, self.subtitle_path, self.filter_script_path, self.plan_path, self.script_path]
        return files + self.image_paths + self.sfx_paths
