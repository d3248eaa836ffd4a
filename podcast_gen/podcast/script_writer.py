"""Script generation: turns a topic and its research notes into chapters of script lines."""

import json
from typing import List, Protocol

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.openai_client import extract_json_object
from podcast_gen.podcast_material import (
    SFX_SPEAKER,
    Chapter,
    Character,
    NarrationMode,
    ScriptLine,
    Source,
    UnresolvedSfx,
)


class TextGenerator(Protocol):
    def generate(self, instruction: str, user_input: str) -> str: ...


class ScriptConstraints(BaseModel):
    total_duration_minutes: float = 10.0
    chapter_count: int = Field(default=3, ge=1)
    narration_mode: NarrationMode = NarrationMode.DIALOGUE
    language: str = "en"
    speakers: List[str] = Field(default_factory=lambda: ["Host", "Guest"])
    include_sound_effects: bool = True
    words_per_minute: int = 150


class GeneratedLine(BaseModel):
    speaker: str
    text: str


class GeneratedChapter(BaseModel):
    title: str
    lines: List[GeneratedLine]
    music_search_keywords: str | None = None
    visual_search_prompts: List[str] = Field(default_factory=list)


class GeneratedScript(BaseModel):
    """Structured answer of the text model."""

    chapters: List[GeneratedChapter] = Field(min_length=1)
    characters: List[Character] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)

    def to_chapters(self) -> List[Chapter]:
        chapters = []
        for generated in self.chapters:
            script = []
            for line in generated.lines:
                if line.speaker.strip().upper() == SFX_SPEAKER:
                    sfx = UnresolvedSfx(search_keywords=line.text)
                    script.append(ScriptLine(speaker=SFX_SPEAKER, text=line.text, sound_effect=sfx))
                else:
                    script.append(ScriptLine(speaker=line.speaker, text=line.text))
            chapters.append(
                Chapter(title=generated.title, script=script, music_search_keywords=generated.music_search_keywords)
            )
        return chapters


SCRIPT_INSTRUCTION = """You write scripts for narrated podcasts.
Answer with a single JSON object and nothing else, using this shape:
{"chapters": [{"title": str, "lines": [{"speaker": str, "text": str}], "music_search_keywords": str,
  "visual_search_prompts": [str]}],
 "characters": [{"name": str, "description": str}],
 "sources": [{"uri": str, "title": str}]}
A line whose speaker is "SFX" describes a short sound effect in a few keywords (e.g. "door creak", "thunder")."""

CORRECTION_INSTRUCTION = """The text below was supposed to be a single valid JSON object but could not be parsed.
Return only the corrected JSON object, keeping its content unchanged. Do not add any explanation."""


class ScriptWriter:
    """Generate a podcast script with a text model.

    A malformed answer gets one correction round (the model is asked to reformat its
    own answer as strict JSON) before the failure is reported.

    Args:
        llm: Text generator, usually an ``OpenAIClient``

    Example:
        >>> writer = ScriptWriter(OpenAIClient())
        >>> script = writer.generate_script("The history of tea", notes, ScriptConstraints(chapter_count=4))
        >>> project.chapters = script.to_chapters()
    """

    def __init__(self, llm: TextGenerator) -> None:
        self.llm = llm

    def build_prompt(self, topic: str, knowledge_base: str, constraints: ScriptConstraints) -> str:
        words = int(constraints.total_duration_minutes * constraints.words_per_minute)
        if constraints.narration_mode == NarrationMode.DIALOGUE:
            voices = f"a dialogue between {', '.join(constraints.speakers)}"
        else:
            voices = f"a monologue by a single narrator named {constraints.speakers[0]}"
        sfx = (
            "Add an SFX line where a sound effect would support the story, at most two per chapter."
            if constraints.include_sound_effects
            else "Do not add SFX lines."
        )
        return (
            f"Topic: {topic}\n"
            f"Language: {constraints.language}\n"
            f"Write {voices}, split into {constraints.chapter_count} chapters, about {words} words in total.\n"
            f"{sfx}\n\n"
            f"Research notes:\n{knowledge_base or '(none)'}"
        )

    def _parse(self, raw: str) -> GeneratedScript:
        return GeneratedScript.model_validate(extract_json_object(raw, fixed_quotes=True))

    def generate_script(self, topic: str, knowledge_base: str, constraints: ScriptConstraints) -> GeneratedScript:
        """Generate the script.

        Raises:
            CollaboratorError: If the model fails, or its answer is still malformed after one correction
        """
        logger.info(f"Generating script for '{topic}' ({constraints.chapter_count} chapters)")
        raw = self.llm.generate(SCRIPT_INSTRUCTION, self.build_prompt(topic, knowledge_base, constraints))
        try:
            script = self._parse(raw)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Script answer is malformed ({type(e).__name__}), asking the model to correct it")
            corrected = self.llm.generate(CORRECTION_INSTRUCTION, f"Parse error: {e}\n\nText:\n{raw}")
            try:
                script = self._parse(corrected)
            except (json.JSONDecodeError, ValidationError) as e2:
                raise CollaboratorError(
                    ErrorKind.MALFORMED_RESPONSE,
                    "Script generation",
                    detail="the answer was still not valid JSON after a correction attempt",
                    cause=e2,
                ) from e2

        lines = sum(len(chapter.lines) for chapter in script.chapters)
        logger.info(f"Script ready: {len(script.chapters)} chapter(s), {lines} line(s)")
        return script
