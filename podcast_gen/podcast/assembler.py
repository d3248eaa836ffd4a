"""Assembly pipeline: from a project with synthesized chapters to the final output bundle."""

import asyncio
import os
import threading
from typing import List

from loguru import logger

from podcast_gen.core.configs.assembly import AssemblyConfig
from podcast_gen.podcast.assets import AssetFetcher, placeholder_image
from podcast_gen.podcast.mixer import AudioMixer, PayloadArena
from podcast_gen.podcast.models import AssemblyResult, ScheduledImage
from podcast_gen.podcast.packager import OutputPackager
from podcast_gen.podcast.render_plan import RenderPlanBuilder, image_file_name, project_image_pool
from podcast_gen.podcast.subtitles import SubtitleGenerator
from podcast_gen.podcast.synthesizer import render_plan
from podcast_gen.podcast.timing import TimingEstimator
from podcast_gen.podcast_material import Project

FILTER_SCRIPT = "filter_complex.txt"
PLAN_FILE = "render_plan.json"
SHELL_SCRIPT = "assemble.sh"
VIDEO_FILE = "podcast.mp4"


def load_project(project_json_path: str) -> Project:
    """Load a project stored as JSON (binary payloads as base64)."""
    if not os.path.exists(project_json_path):
        raise FileNotFoundError(f"Project file not found: {project_json_path}")
    with open(project_json_path, encoding="utf-8") as f:
        return Project.model_validate_json(f.read())


class PodcastAssembler:
    """Assemble a podcast project into audio, subtitles, images and a render plan.

    The pipeline:
    1. Prefetch remote assets (music, sound effects, images) with bounded concurrency
    2. Mix the master track (aborts with ``NoAudioAssets`` before anything is written)
    3. Write the subtitles, timed on the chapter durations measured by the mixer
    4. Schedule and write the slideshow images
    5. Write the render plan (filter graph, JSON description, shell script)
    6. Optionally package everything into a zip and render the video locally

    Args:
        config: Tunable constants of every stage
        fetcher: Asset fetcher, also used as the mixer's music and SFX loader
        mixer: Audio mixer
        subtitles: Subtitle generator
        builder: Render plan builder
        packager: Output packager

    Example:
        >>> assembler = PodcastAssembler(AssemblyConfig.load("assembly.json"))
        >>> result = assembler.assemble(load_project("project.json"), output_dir="output/tea")
        >>> print(result.package_path)
    """

    def __init__(
        self,
        config: AssemblyConfig | None = None,
        fetcher: AssetFetcher | None = None,
        mixer: AudioMixer | None = None,
        subtitles: SubtitleGenerator | None = None,
        builder: RenderPlanBuilder | None = None,
        packager: OutputPackager | None = None,
    ) -> None:
        self.config = config or AssemblyConfig()
        self.fetcher = fetcher or AssetFetcher()
        self.mixer = mixer or AudioMixer(
            self.config.mix,
            TimingEstimator(self.config.timing),
            music_loader=self.fetcher.fetch_music,
            sfx_loader=self.fetcher.fetch_sound_effect,
        )
        self.subtitles = subtitles or SubtitleGenerator(self.config.subtitles, self.config.timing)
        self.builder = builder or RenderPlanBuilder(self.config.render, self.config.pacing)
        self.packager = packager or OutputPackager()

    def _ensure_images(self, project: Project) -> None:
        """Give every image a payload, and the project at least one image."""
        for chapter in project.chapters:
            for index, image in enumerate(chapter.images):
                if image.payload is None:
                    chapter.images[index] = self.fetcher.fetch_image(image)
        if not project_image_pool(project) and project.chapters:
            logger.warning("The project has no images, the video shows a placeholder")
            width, height = self.config.render.width, self.config.render.height
            project.chapters[0].images.append(placeholder_image(width, height))

    def _write_images(self, project: Project, schedule: List[ScheduledImage], output_dir: str) -> tuple[List[str], int]:
        """Write the scheduled images and release every image payload of the project."""
        used = {slot.pool_index for slot in schedule}
        paths = []
        with PayloadArena() as arena:
            for pool_index, image in enumerate(project_image_pool(project)):
                file_name = image_file_name(pool_index, image)
                payload = arena.take_image(image)
                if pool_index not in used or payload is None:
                    continue
                path = os.path.join(output_dir, file_name)
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "wb") as f:
                    f.write(payload)
                paths.append(path)
        logger.info(f"Wrote {len(paths)} image(s) to {os.path.join(output_dir, 'images')}")
        return paths, arena.bytes_freed

    def assemble(
        self,
        project: Project,
        output_dir: str,
        audio_format: str = "wav",
        subtitle_mode: str | None = None,
        sfx_in_render_plan: bool = False,
        prefetch: bool = True,
        package: bool = True,
        render_video: bool = False,
        preview_duration: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AssemblyResult:
        """Run the assembly pipeline.

        Args:
            project: The project, with synthesized chapter audio
            output_dir: Directory receiving every output file
            audio_format: ``wav`` or any format ffmpeg can encode (e.g. ``mp3``)
            subtitle_mode: ``precise`` or ``estimated``, defaults to the configured mode
            sfx_in_render_plan: Leave sound effects out of the master track and mix them
                                in the renderer instead (exported under ``sfx/``)
            prefetch: Download remote assets before mixing
            package: Bundle the output files into a zip archive
            render_video: Run the render plan with a local ffmpeg
            preview_duration: Only render the first N seconds of the video
            cancel_event: Cancels the mix between chapters

        Returns:
            AssemblyResult: Paths of the produced files and the mix report

        Raises:
            NoAudioAssets: If no chapter has decodable speech audio
            MixCancelled: If ``cancel_event`` is set during the mix
            subprocess.CalledProcessError: If the local render fails
        """
        logger.info("=" * 80)
        logger.info(f"Assembling podcast: {project.title}")
        logger.info(f"  Chapters: {len(project.chapters)}")
        logger.info(f"  Output: {output_dir}")
        logger.info("=" * 80)
        os.makedirs(output_dir, exist_ok=True)

        if prefetch:
            asyncio.run(self.fetcher.prefetch(project))

        master = self.mixer.mix(
            project,
            include_sfx=not sfx_in_render_plan,
            sfx_export_dir=output_dir if sfx_in_render_plan else None,
            cancel_event=cancel_event,
        )
        report = master.report
        bitrate = self.config.mix.mp3_bitrate if audio_format != "wav" else None
        audio_path = master.save(os.path.join(output_dir, f"audio.{audio_format}"), audio_format, bitrate)
        total_duration = master.duration
        del master

        cues = self.subtitles.generate(project, mode=subtitle_mode, chapter_durations=report.chapter_durations())
        subtitle_path = self.subtitles.write(cues, os.path.join(output_dir, self.config.render.subtitle_file))

        self._ensure_images(project)
        schedule = self.builder.schedule(project, total_duration)
        image_paths, image_bytes_freed = self._write_images(project, schedule, output_dir)

        plan = self.builder.build(
            project,
            total_duration,
            audio_file=os.path.basename(audio_path),
            sfx_events=report.sfx_events if sfx_in_render_plan else None,
            schedule=schedule,
        )
        filter_script_path = os.path.join(output_dir, FILTER_SCRIPT)
        with open(filter_script_path, "w", encoding="utf-8") as f:
            f.write(plan.filter_complex())
        plan_path = os.path.join(output_dir, PLAN_FILE)
        with open(plan_path, "w", encoding="utf-8") as f:
            f.write(plan.model_dump_json(indent=2))
        script_path = os.path.join(output_dir, SHELL_SCRIPT)
        with open(script_path, "w", encoding="utf-8") as f:
            f.write(plan.shell_script(VIDEO_FILE, filter_script=FILTER_SCRIPT))
        os.chmod(script_path, 0o755)

        sfx_files = sorted({event.file_name for event in report.sfx_events if event.file_name})
        music_bytes_freed = self.fetcher.release_music()
        result = AssemblyResult(
            title=project.title,
            output_dir=output_dir,
            duration=total_duration,
            audio_path=audio_path,
            subtitle_path=subtitle_path,
            filter_script_path=filter_script_path,
            plan_path=plan_path,
            script_path=script_path,
            image_paths=image_paths,
            sfx_paths=[os.path.join(output_dir, file_name) for file_name in sfx_files],
            cue_count=len(cues),
            bytes_freed=report.bytes_freed + image_bytes_freed + music_bytes_freed,
            report=report,
        )

        if package:
            result.package_path = self.packager.package(result)
        if render_video:
            result.video_path = render_plan(
                plan, output_dir, VIDEO_FILE, preview_duration=preview_duration, filter_script=FILTER_SCRIPT
            )

        logger.info("=" * 80)
        logger.info("Assembly complete")
        logger.info(f"  Duration: {result.duration:.2f}s")
        logger.info(f"  Subtitle cues: {result.cue_count}")
        logger.info(f"  Images: {len(result.image_paths)} file(s), {len(schedule)} slot(s)")
        logger.info(f"  Bytes freed: {result.bytes_freed / (1024 * 1024):.2f} MB")
        if result.package_path:
            logger.info(f"  Package: {result.package_path}")
        logger.info("=" * 80)
        return result


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Podcast Assembler - mix, subtitle and plan the render of a project")
    parser.add_argument("project_json", type=str, help="Path to the project JSON file")
    parser.add_argument("--output-dir", type=str, default="output", help="Output directory (default: ./output)")
    parser.add_argument("--config", type=str, default=None, help="Assembly config JSON overriding the defaults")
    parser.add_argument(
        "--audio-format", type=str, default="wav", help='Master track format (default: "wav"). Options: wav, mp3'
    )
    parser.add_argument(
        "--subtitle-mode",
        type=str,
        choices=["precise", "estimated"],
        default=None,
        help="Subtitle timing mode (default: from config)",
    )
    parser.add_argument(
        "--sfx-in-render-plan",
        action="store_true",
        help="Mix sound effects in the renderer instead of the master track",
    )
    parser.add_argument("--no-prefetch", action="store_true", help="Skip downloading remote assets")
    parser.add_argument("--no-package", action="store_true", help="Skip creating the zip package")
    parser.add_argument("--render-video", action="store_true", help="Render the video with a local ffmpeg")
    parser.add_argument(
        "--preview-duration",
        type=float,
        default=None,
        help="Only render the first N seconds of the video",
    )
    args = parser.parse_args()

    assembler = PodcastAssembler(AssemblyConfig.load(args.config))
    assembler.assemble(
        load_project(args.project_json),
        output_dir=args.output_dir,
        audio_format=args.audio_format,
        subtitle_mode=args.subtitle_mode,
        sfx_in_render_plan=args.sfx_in_render_plan,
        prefetch=not args.no_prefetch,
        package=not args.no_package,
        render_video=args.render_video,
        preview_duration=args.preview_duration,
    )
