"""Reading-time estimation for script lines.

The estimators place lines on a chapter-relative timeline before (or without) the real
speech duration being known. They drive SFX anchoring in the mixer and cue timing in
the estimated subtitle mode.
"""

from typing import List, Protocol, Sequence

from podcast_gen.core.configs.assembly import TimingConfig
from podcast_gen.podcast.models import LineTiming
from podcast_gen.podcast_material import ScriptLine


class DurationHeuristic(Protocol):
    def __call__(self, text: str) -> float: ...


class WordRate:
    """Duration from the word count at a fixed number of words per second."""

    def __init__(self, words_per_second: float = 2.5, min_duration: float = 1.0) -> None:
        self.words_per_second = words_per_second
        self.min_duration = min_duration

    def __call__(self, text: str) -> float:
        return max(self.min_duration, len(text.split()) / self.words_per_second)


class CharRate:
    """Duration from the character count at a fixed number of characters per second."""

    def __init__(self, chars_per_second: float = 15.0, min_duration: float = 1.0) -> None:
        self.chars_per_second = chars_per_second
        self.min_duration = min_duration

    def __call__(self, text: str) -> float:
        return max(self.min_duration, len(text.strip()) / self.chars_per_second)


class TimingEstimator:
    """Estimate line durations and lay lines out on a running cursor.

    Each spoken line advances the cursor by its estimated duration plus the inter-line
    pause. An SFX line does not advance the cursor; the cursor position when it is met
    is its anchor.

    Args:
        config: Reading-speed constants
        heuristic: Overrides the heuristic selected by ``config.strategy``

    Example:
        >>> estimator = TimingEstimator()
        >>> estimator.estimate_line_duration(ScriptLine(speaker="Host", text="Welcome to the show"))
        1.6
        >>> [t.start for t in estimator.schedule(chapter.script)]
        [0.0, 2.1, 2.1, 5.3]
    """

    def __init__(self, config: TimingConfig | None = None, heuristic: DurationHeuristic | None = None) -> None:
        self.config = config or TimingConfig()
        if heuristic is not None:
            self.heuristic = heuristic
        elif self.config.strategy == "chars":
            self.heuristic = CharRate(self.config.chars_per_second, self.config.min_line_duration)
        else:
            self.heuristic = WordRate(self.config.words_per_second, self.config.min_line_duration)

    @classmethod
    def by_characters(cls, chars_per_second: float = 15.0, min_duration: float = 1.0) -> "TimingEstimator":
        config = TimingConfig(strategy="chars", chars_per_second=chars_per_second, min_line_duration=min_duration)
        return cls(config)

    def estimate_text_duration(self, text: str) -> float:
        return self.heuristic(text)

    def estimate_line_duration(self, line: ScriptLine) -> float:
        """Seconds the line takes to read; zero for SFX lines."""
        if line.is_sfx:
            return 0.0
        return self.heuristic(line.text)

    def schedule(self, lines: Sequence[ScriptLine]) -> List[LineTiming]:
        """Place every line of a chapter on a timeline starting at zero."""
        timings = []
        cursor = 0.0
        for index, line in enumerate(lines):
            if line.is_sfx:
                timings.append(LineTiming(index=index, start=cursor, duration=0.0, is_sfx=True))
                continue
            duration = self.estimate_line_duration(line)
            timings.append(LineTiming(index=index, start=cursor, duration=duration))
            cursor += duration + self.config.inter_line_pause
        return timings

    def chapter_duration(self, lines: Sequence[ScriptLine]) -> float:
        """Estimated duration of a whole chapter, pauses included."""
        spoken = [line for line in lines if not line.is_sfx]
        if not spoken:
            return 0.0
        return sum(self.estimate_line_duration(line) for line in spoken) + self.config.inter_line_pause * len(spoken)

    def sfx_anchor(self, timing: LineTiming) -> float:
        """Start of a sound effect relative to its chapter, moved slightly ahead of the narration."""
        return max(0.0, timing.start - self.config.sfx_anticipation)
