"""Render plan builder: the ffmpeg filter graph that turns images, the master track,
subtitles and (optionally) sound effects into the final video.

The builder only describes the render. Running it is the job of
``podcast_gen.podcast.synthesizer`` or of the ``assemble.sh`` script shipped in the
package.
"""

import math
from typing import List, Sequence

from loguru import logger

from podcast_gen.core.configs.assembly import PacingConfig, RenderConfig
from podcast_gen.podcast.models import FilterStage, RenderInput, RenderPlan, ScheduledImage, SfxEvent
from podcast_gen.podcast.pacing import plan_image_schedule
from podcast_gen.podcast_material import ImageAsset, Project


def escape_filter_value(value: str) -> str:
    """Escape a filter option value for use inside a filter graph.

    Two parsers unescape it in turn: the filter options (special characters
    ``\\ ' :``), then the graph (``\\ ' [ ] , ;``).
    """
    for specials in ("\\':", "\\'[],;"):
        value = "".join("\\" + c if c in specials else c for c in value)
    return value


def image_file_name(pool_index: int, image: ImageAsset) -> str:
    return f"images/img_{pool_index:03d}.{image.extension}"


def project_image_pool(project: Project) -> List[ImageAsset]:
    """All chapter images in chapter order."""
    return [image for chapter in project.chapters for image in chapter.images]


def manual_overrides(project: Project) -> List[float] | None:
    """Concatenated manual durations, or None if any chapter with images has none."""
    overrides: List[float] = []
    for chapter in project.chapters:
        if not chapter.images:
            continue
        if chapter.image_durations is None:
            return None
        overrides.extend(chapter.image_durations)
    return overrides


class RenderPlanBuilder:
    """Build the render plan of a project.

    Input order is fixed: one input per scheduled image, then the master audio, then
    one input per rendered sound effect. The video chain ends at ``[outv]`` and the
    audio chain at ``[outa]``.

    Args:
        config: Geometry, frame rate, Ken Burns motion, subtitle style, encoder args
        pacing: Comfort band handed to the image balancer
    """

    def __init__(self, config: RenderConfig | None = None, pacing: PacingConfig | None = None) -> None:
        self.config = config or RenderConfig()
        self.pacing = pacing or PacingConfig()

    def schedule(self, project: Project, total_duration: float) -> List[ScheduledImage]:
        pool = project_image_pool(project)
        if not pool:
            raise ValueError("The project has no images to show")
        positions = {id(image): index for index, image in enumerate(pool)}
        slots = plan_image_schedule(
            pool,
            total_duration,
            pacing_mode=project.pacing_mode,
            overrides=manual_overrides(project),
            config=self.pacing,
        )
        scheduled = []
        start = 0.0
        for image, duration in slots:
            pool_index = positions[id(image)]
            scheduled.append(
                ScheduledImage(
                    pool_index=pool_index,
                    file_name=image_file_name(pool_index, image),
                    start=start,
                    duration=duration,
                )
            )
            start += duration
        return scheduled

    def build(
        self,
        project: Project,
        total_duration: float,
        audio_file: str = "audio.wav",
        sfx_events: Sequence[SfxEvent] | None = None,
        schedule: List[ScheduledImage] | None = None,
    ) -> RenderPlan:
        """Describe the render of ``project`` over ``total_duration`` seconds.

        Args:
            project: The project, used for its image pool and pacing settings
            total_duration: Runtime of the master track
            audio_file: Relative path of the master track
            sfx_events: Sound effects to mix in the renderer; only events with a
                        ``file_name`` are used. Leave empty when the master track
                        already contains the effects.
            schedule: A precomputed slideshow, computed from the project when omitted

        Returns:
            RenderPlan: Inputs, ordered filter stages and output labels
        """
        schedule = schedule if schedule is not None else self.schedule(project, total_duration)
        if not schedule:
            raise ValueError("Cannot build a render plan without scheduled images")
        cfg = self.config

        inputs = [RenderInput(kind="image", path=slot.file_name) for slot in schedule]
        stages = []

        # Frame counts come from rounded cumulative boundaries so the slideshow length never drifts.
        concat_labels = []
        for i, slot in enumerate(schedule):
            frames = max(1, round((slot.start + slot.duration) * cfg.fps) - round(slot.start * cfg.fps))
            stages.append(
                FilterStage(
                    inputs=[f"{i}:v"],
                    filter=(
                        f"scale={cfg.width}:{cfg.height}:force_original_aspect_ratio=increase,"
                        f"crop={cfg.width}:{cfg.height},setsar=1,format=pix_fmts=yuv420p,"
                        f"zoompan=z='min(zoom+{cfg.zoom_increment},{cfg.max_zoom})':d={frames}"
                        f":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':s={cfg.width}x{cfg.height}:fps={cfg.fps}"
                    ),
                    outputs=[f"v{i}"],
                )
            )
            concat_labels.append(f"v{i}")
        stages.append(
            FilterStage(inputs=concat_labels, filter=f"concat=n={len(concat_labels)}:v=1:a=0", outputs=["concatv"])
        )
        stages.append(
            FilterStage(
                inputs=["concatv"],
                filter=f"subtitles={escape_filter_value(cfg.subtitle_file)}:force_style='{cfg.force_style}'",
                outputs=["outv"],
            )
        )

        audio_index = len(inputs)
        inputs.append(RenderInput(kind="audio", path=audio_file))
        rendered_sfx = [event for event in (sfx_events or []) if event.file_name]
        if not rendered_sfx:
            stages.append(FilterStage(inputs=[f"{audio_index}:a"], filter="anull", outputs=["outa"]))
        else:
            previous = f"{audio_index}:a"
            for k, event in enumerate(rendered_sfx):
                input_index = len(inputs)
                inputs.append(RenderInput(kind="sfx", path=event.file_name))
                delay_ms = int(round(event.start * 1000))
                stages.append(
                    FilterStage(
                        inputs=[f"{input_index}:a"],
                        filter=f"adelay={delay_ms}:all=1,volume={event.gain:.3f}",
                        outputs=[f"sfx{k}"],
                    )
                )
                output = "outa" if k == len(rendered_sfx) - 1 else f"amix{k}"
                stages.append(
                    FilterStage(
                        inputs=[previous, f"sfx{k}"],
                        filter="amix=inputs=2:duration=first:dropout_transition=0:normalize=0",
                        outputs=[output],
                    )
                )
                previous = output

        plan = RenderPlan(
            inputs=inputs,
            stages=stages,
            duration=total_duration,
            width=cfg.width,
            height=cfg.height,
            fps=cfg.fps,
            schedule=schedule,
            output_args=[*cfg.video_args, *cfg.audio_args, "-shortest"],
        )
        logger.info(
            f"Render plan: {len(schedule)} image slot(s), {len(rendered_sfx)} renderer-mixed sound effect(s), "
            f"{len(stages)} filter stage(s), {math.ceil(total_duration)}s"
        )
        return plan
