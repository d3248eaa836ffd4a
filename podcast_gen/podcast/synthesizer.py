"""Local video render of an assembled podcast.

Runs the ffmpeg command described by a ``RenderPlan`` inside the assembly output
directory, where every input path of the plan is relative.
"""

import os
import subprocess

from loguru import logger

from podcast_gen.common.tools import get_ffmpeg_path, invoke_command
from podcast_gen.podcast.models import RenderPlan


def render_plan(
    plan: RenderPlan,
    workdir: str,
    output_path: str = "podcast.mp4",
    preview_duration: float | None = None,
    filter_script: str = "filter_complex.txt",
) -> str:
    """Render the video described by ``plan``.

    Args:
        plan: The render plan
        workdir: Directory holding the plan inputs (images, audio, subtitles, sfx)
        output_path: Video file to produce, relative to ``workdir`` or absolute
        preview_duration: If set, only render the first N seconds (for testing).
                          None means render the full video.
        filter_script: File receiving the filter graph, relative to ``workdir``

    Returns:
        Absolute path of the rendered video

    Raises:
        FileNotFoundError: If ffmpeg or one of the plan inputs is missing
        subprocess.CalledProcessError: If ffmpeg fails

    Example:
        >>> render_plan(result_plan, workdir="output/tea", preview_duration=30.0)
        '/abs/output/tea/podcast.mp4'
    """
    logger.info("=" * 80)
    logger.info("Starting Video Render (ffmpeg)")
    if preview_duration:
        logger.info(f"Preview Mode: First {preview_duration} seconds")
    logger.info("=" * 80)

    ffmpeg = get_ffmpeg_path()
    if ffmpeg is None:
        raise FileNotFoundError("ffmpeg was not found on the PATH")

    for render_input in plan.inputs:
        if not os.path.exists(os.path.join(workdir, render_input.path)):
            raise FileNotFoundError(f"Render input not found: {render_input.path}")

    if preview_duration:
        plan = plan.model_copy(update={"duration": min(preview_duration, plan.duration)})

    with open(os.path.join(workdir, filter_script), "w", encoding="utf-8") as f:
        f.write(plan.filter_complex())

    output_dir = os.path.dirname(os.path.join(workdir, output_path))
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    logger.info(f"  Resolution: {plan.width}x{plan.height}")
    logger.info(f"  FPS: {plan.fps}")
    logger.info(f"  Duration: {plan.duration:.1f}s")
    logger.info(f"  Inputs: {len(plan.inputs)}, filter stages: {len(plan.stages)}")

    cmd = plan.command(output_path, ffmpeg=ffmpeg, filter_script=filter_script)
    logger.info("  Running: ffmpeg ...")
    process = invoke_command(cmd, cwd=workdir)
    if process.returncode != 0:
        logger.error("ffmpeg failed:")
        logger.error(f"  stdout: {process.stdout}")
        logger.error(f"  stderr: {process.stderr}")
        raise subprocess.CalledProcessError(process.returncode, cmd, process.stdout, process.stderr)

    video_path = os.path.abspath(os.path.join(workdir, output_path))
    logger.info("=" * 80)
    logger.info("Video Render Complete!")
    logger.info(f"Output: {video_path}")
    logger.info("=" * 80)
    return video_path
