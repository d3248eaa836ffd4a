"""Speech synthesis of chapter scripts."""

from typing import Dict, List, Protocol, Sequence

import numpy as np
from loguru import logger

from podcast_gen.core.tools.errors import CollaboratorError, as_collaborator_error
from podcast_gen.podcast.audio_codec import AudioDecodeError, PcmBuffer, decode_audio, encode_audio
from podcast_gen.podcast_material import Chapter, ChapterStatus, NarrationMode, Project, ScriptLine


class SpeechBackend(Protocol):
    def speech(self, text: str, voice: str, response_format: str = "wav") -> bytes: ...


class SpeechSynthesizer:
    """Synthesize the speaking lines of a script to one audio payload.

    Dialogue mode speaks each line with its speaker's voice. If any part of a dialogue
    fails, the whole script is synthesized again once as a single-voice monologue
    before the failure is reported.

    Args:
        backend: Speech backend, usually an ``OpenAIClient``
        default_voice: Voice for speakers without an assigned voice
        monologue_voice: Voice used for monologues and for the dialogue fallback
        line_gap: Silence inserted between dialogue lines, in seconds
    """

    def __init__(
        self,
        backend: SpeechBackend,
        default_voice: str = "alloy",
        monologue_voice: str = "onyx",
        line_gap: float = 0.25,
    ) -> None:
        self.backend = backend
        self.default_voice = default_voice
        self.monologue_voice = monologue_voice
        self.line_gap = line_gap

    def synthesize(
        self,
        lines: Sequence[ScriptLine],
        mode: NarrationMode = NarrationMode.DIALOGUE,
        voices: Dict[str, str] | None = None,
        monologue_voice: str | None = None,
    ) -> bytes:
        """Return WAV audio for the speaking lines of ``lines``.

        A script without speaking lines yields one second of silence.

        Raises:
            CollaboratorError: If synthesis fails in every available mode
        """
        spoken = [line for line in lines if not line.is_sfx and line.text.strip()]
        if not spoken:
            logger.warning("No speaking lines, producing one second of silence")
            return encode_audio(PcmBuffer.silence(1.0, sample_rate=24000, channels=1))

        if mode == NarrationMode.DIALOGUE:
            try:
                return self._dialogue(spoken, voices or {})
            except (CollaboratorError, AudioDecodeError) as e:
                logger.warning(f"Dialogue synthesis failed ({e}), retrying once as a monologue")

        try:
            text = " ".join(line.text.strip() for line in spoken)
            return self.backend.speech(text, monologue_voice or self.monologue_voice)
        except Exception as e:
            raise as_collaborator_error(e, "Speech synthesis") from e

    def _dialogue(self, lines: List[ScriptLine], voices: Dict[str, str]) -> bytes:
        parts: List[PcmBuffer] = []
        for line in lines:
            voice = voices.get(line.speaker, self.default_voice)
            payload = self.backend.speech(line.text.strip(), voice)
            first = parts[0] if parts else None
            parts.append(decode_audio(payload, first.sample_rate if first else None, first.channels if first else None))

        sample_rate, channels = parts[0].sample_rate, parts[0].channels
        gap = np.zeros((int(round(self.line_gap * sample_rate)), channels), dtype=np.float32)
        pieces = []
        for index, part in enumerate(parts):
            if index:
                pieces.append(gap)
            pieces.append(part.samples)
        return encode_audio(PcmBuffer(np.concatenate(pieces), sample_rate))

    def synthesize_chapter(self, chapter: Chapter, project: Project) -> Chapter:
        """Synthesize ``chapter`` in place, moving its status to completed or error."""
        chapter.transition(ChapterStatus.AUDIO_GENERATING)
        try:
            chapter.audio = self.synthesize(
                chapter.script,
                mode=project.narration_mode,
                voices=project.voice_assignment(),
                monologue_voice=project.monologue_voice,
            )
        except CollaboratorError as e:
            logger.error(f"[chapter {chapter.id}] speech: {e}")
            chapter.transition(ChapterStatus.ERROR, error=e.user_message)
            return chapter
        chapter.transition(ChapterStatus.COMPLETED)
        logger.info(f"[chapter {chapter.id}] speech ready, {len(chapter.audio) / 1024:.0f} KB")
        return chapter
