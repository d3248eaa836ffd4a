"""Subtitle cue generation for podcast projects."""

from typing import Dict, List

from loguru import logger

from podcast_gen.common.tools import chunk_subtitle_text, clean_subtitle_text, srt_bytes, write_srt
from podcast_gen.core.configs.assembly import SubtitleConfig, TimingConfig
from podcast_gen.podcast.audio_codec import AudioDecodeError, probe_duration
from podcast_gen.podcast.models import SubtitleCue
from podcast_gen.podcast.timing import TimingEstimator
from podcast_gen.podcast_material import Chapter, Project


class SubtitleGenerator:
    """Build subtitle cues for every spoken line of a project.

    Two modes are available:

    - ``precise``: each chapter's real audio duration is split across its spoken lines
      in proportion to their character counts. Lines that would be shown for less than
      ``min_cue_duration`` are not shown, but their time still elapses.
    - ``estimated``: no audio is decoded; each line is timed with a character-rate
      estimator and optionally wrapped into two-line chunks.

    When a chapter's duration cannot be determined in precise mode its lines are
    skipped and the cursor advances by the chapter's estimated duration, so later
    chapters stay in sync.

    Args:
        config: Subtitle settings
        timing: Pause between lines and the line floor, shared with the mixer

    Example:
        >>> generator = SubtitleGenerator()
        >>> cues = generator.generate(project, chapter_durations=master.report.chapter_durations())
        >>> generator.write(cues, "output/subtitles.srt")
    """

    def __init__(self, config: SubtitleConfig | None = None, timing: TimingConfig | None = None) -> None:
        self.config = config or SubtitleConfig()
        self.timing = timing or TimingConfig()
        self.estimator = TimingEstimator(
            TimingConfig(
                strategy="chars",
                chars_per_second=self.config.chars_per_second,
                min_line_duration=self.config.min_chunk_duration,
                inter_line_pause=self.timing.inter_line_pause,
            )
        )

    def generate(
        self,
        project: Project,
        mode: str | None = None,
        chapter_durations: Dict[str, float] | None = None,
    ) -> List[SubtitleCue]:
        """Generate cues for the whole project.

        Args:
            project: The project
            mode: ``precise`` or ``estimated``, defaults to the configured mode
            chapter_durations: Chapter durations measured by the mixer, keyed by chapter
                id. In precise mode they are used instead of decoding the chapter audio;
                chapters missing from the mapping were left out of the mix and take no time.

        Returns:
            List[SubtitleCue]: Cues with 1-based indices, in playback order
        """
        mode = mode or self.config.mode
        if mode not in ("precise", "estimated"):
            raise ValueError(f"Unknown subtitle mode: {mode}")

        logger.info(f"Generating subtitles ({mode}) for {len(project.chapters)} chapter(s)")
        cues: List[SubtitleCue] = []
        cursor = 0.0
        for chapter in project.chapters:
            if mode == "estimated":
                cursor = self._estimated_chapter(chapter, cursor, cues)
                continue

            if chapter_durations is not None:
                duration = chapter_durations.get(chapter.id)
                if duration is None:
                    logger.debug(f"[chapter {chapter.id}] subtitles: not in the mix, skipped")
                    continue
            else:
                duration = self._decode_duration(chapter)
                if duration is None:
                    estimated = self.estimator.chapter_duration(chapter.script)
                    logger.warning(
                        f"[chapter {chapter.id}] subtitles: audio duration unknown, "
                        f"skipping its lines and advancing {estimated:.2f}s"
                    )
                    cursor += estimated
                    continue
            self._precise_chapter(chapter, cursor, duration, cues)
            cursor += duration

        logger.info(f"Generated {len(cues)} subtitle cue(s) covering {cursor:.2f}s")
        return cues

    def _decode_duration(self, chapter: Chapter) -> float | None:
        if chapter.audio is None:
            return None
        try:
            return probe_duration(chapter.audio)
        except AudioDecodeError as e:
            logger.error(f"[chapter {chapter.id}] subtitles: audio decode failed: {e}")
            return None

    def _chunks(self, text: str) -> List[str]:
        if not self.config.wrap:
            return [text]
        return chunk_subtitle_text(text, self.config.max_line_length, self.config.max_lines)

    def _append(self, cues: List[SubtitleCue], start: float, end: float, text: str) -> None:
        # Absorb float drift between chapter offsets and accumulated line durations.
        if cues and start < cues[-1].end:
            start = cues[-1].end
        cues.append(SubtitleCue(index=len(cues) + 1, start=start, end=end, text=text))

    def _precise_chapter(self, chapter: Chapter, start: float, duration: float, cues: List[SubtitleCue]) -> None:
        lines = [
            (index, clean_subtitle_text(line.text))
            for index, line in enumerate(chapter.script)
            if not line.is_sfx
        ]
        lines = [(index, text) for index, text in lines if text]
        total_chars = sum(len(text) for _, text in lines)
        if total_chars == 0 or duration <= 0:
            return

        cursor = start
        for index, text in lines:
            line_duration = duration * len(text) / total_chars
            chunks = self._chunks(text)
            chunk_chars = sum(len(chunk) for chunk in chunks)
            for chunk in chunks:
                chunk_duration = line_duration * len(chunk) / chunk_chars
                if chunk_duration >= self.config.min_cue_duration:
                    self._append(cues, cursor, cursor + chunk_duration, chunk)
                else:
                    logger.debug(
                        f"[chapter {chapter.id}] line {index}: {chunk_duration:.2f}s is too short to read, not shown"
                    )
                cursor += chunk_duration

    def _estimated_chapter(self, chapter: Chapter, start: float, cues: List[SubtitleCue]) -> float:
        cursor = start
        for line in chapter.script:
            if line.is_sfx:
                continue
            text = clean_subtitle_text(line.text)
            if not text:
                cursor += self.estimator.estimate_text_duration(text) + self.estimator.config.inter_line_pause
                continue
            for chunk in self._chunks(text):
                chunk_duration = self.estimator.estimate_text_duration(chunk.replace("\n", " "))
                self._append(cues, cursor, cursor + chunk_duration, chunk)
                cursor += chunk_duration
            cursor += self.estimator.config.inter_line_pause
        return cursor

    def to_srt(self, cues: List[SubtitleCue]) -> bytes:
        return srt_bytes(cues, byte_order_mark=self.config.byte_order_mark)

    def write(self, cues: List[SubtitleCue], output_path: str) -> str:
        return write_srt(cues, output_path, byte_order_mark=self.config.byte_order_mark)
