import uuid
from enum import Enum
from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SFX_SPEAKER = "SFX"

# Binary payloads travel as base64 when a project is stored as JSON.
BINARY_JSON = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")


class InvalidStatusTransition(ValueError):
    """Raised when a chapter is moved to a status it cannot reach from its current one."""


class ChapterStatus(str, Enum):
    PENDING = "pending"
    SCRIPT_GENERATING = "script_generating"
    AUDIO_GENERATING = "audio_generating"
    COMPLETED = "completed"
    ERROR = "error"


_STATUS_ORDER = [
    ChapterStatus.PENDING,
    ChapterStatus.SCRIPT_GENERATING,
    ChapterStatus.AUDIO_GENERATING,
    ChapterStatus.COMPLETED,
]


class NarrationMode(str, Enum):
    DIALOGUE = "dialogue"
    MONOLOGUE = "monologue"


class ImageSourceMode(str, Enum):
    GENERATED = "generated"
    STOCK = "stock"


class PacingMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class SoundEffectPreviews(BaseModel):
    """Preview URLs of a sound effect as returned by the search service."""

    model_config = ConfigDict(populate_by_name=True)

    preview_hq_mp3: str | None = Field(default=None, alias="preview-hq-mp3")
    preview_hq_ogg: str | None = Field(default=None, alias="preview-hq-ogg")
    preview_lq_mp3: str | None = Field(default=None, alias="preview-lq-mp3")
    preview_lq_ogg: str | None = Field(default=None, alias="preview-lq-ogg")


class SoundEffect(BaseModel):
    """A searchable sound effect.

    Attributes:
        id: Identifier of the effect in the search service
        name: Human readable name, also used to classify the effect as sudden or atmospheric
        license: License URL or name, kept for attribution
        username: Author of the effect
        previews: Preview URLs in the formats offered by the service
    """

    id: int
    name: str = ""
    license: str = ""
    username: str = ""
    previews: SoundEffectPreviews = Field(default_factory=SoundEffectPreviews)

    def preview_urls(self) -> List[str]:
        """Return the preview URLs ranked hq-mp3, hq-ogg, lq-mp3, lq-ogg, forced to https."""
        ranked = [
            self.previews.preview_hq_mp3,
            self.previews.preview_hq_ogg,
            self.previews.preview_lq_mp3,
            self.previews.preview_lq_ogg,
        ]
        urls = []
        for url in ranked:
            if not url:
                continue
            if url.startswith("http://"):
                url = "https://" + url[len("http://") :]
            if url not in urls:
                urls.append(url)
        return urls


class UnresolvedSfx(BaseModel):
    """An SFX line that has not been matched to a sound effect yet."""

    kind: Literal["unresolved"] = "unresolved"
    search_keywords: str | None = None


class ResolvedSfx(BaseModel):
    """An SFX line matched to a sound effect whose audio has not been fetched."""

    kind: Literal["resolved"] = "resolved"
    effect: SoundEffect


class DownloadedSfx(BaseModel):
    """An SFX line whose sound effect audio is held in memory."""

    model_config = BINARY_JSON

    kind: Literal["downloaded"] = "downloaded"
    effect: SoundEffect
    payload: bytes = Field(repr=False)


SfxAttachment = Annotated[Union[UnresolvedSfx, ResolvedSfx, DownloadedSfx], Field(discriminator="kind")]


class ScriptLine(BaseModel):
    """One line of a chapter script.

    A line spoken by the reserved ``SFX`` pseudo-speaker carries no dialogue; its position
    in the script is the anchor of the sound effect attached to it.

    Attributes:
        speaker: Speaker label, or ``SFX``
        text: Spoken text (for SFX lines, a description of the sound)
        sound_effect: Attachment state of the sound effect, only meaningful for SFX lines
        sound_effect_volume: Per-line gain override for the sound effect
    """

    speaker: str
    text: str = ""
    sound_effect: SfxAttachment | None = None
    sound_effect_volume: float | None = Field(default=None, ge=0.0)

    @property
    def is_sfx(self) -> bool:
        return self.speaker.strip().upper() == SFX_SPEAKER

    @property
    def effect(self) -> SoundEffect | None:
        if isinstance(self.sound_effect, (ResolvedSfx, DownloadedSfx)):
            return self.sound_effect.effect
        return None

    @property
    def has_payload(self) -> bool:
        return isinstance(self.sound_effect, DownloadedSfx)

    def resolve(self, effect: SoundEffect) -> None:
        """Attach a sound effect found by search. Any held payload is dropped."""
        self.sound_effect = ResolvedSfx(effect=effect)

    def attach_payload(self, payload: bytes) -> None:
        """Move a resolved sound effect to the downloaded state.

        Raises:
            ValueError: If the line has no resolved sound effect or the payload is empty
        """
        effect = self.effect
        if effect is None:
            raise ValueError("Cannot attach audio to a line without a resolved sound effect")
        if not payload:
            raise ValueError(f"Empty payload for sound effect {effect.id}")
        self.sound_effect = DownloadedSfx(effect=effect, payload=payload)

    def release_payload(self) -> bytes | None:
        """Take the payload out of the line, leaving it resolved. Returns None if nothing was held."""
        if not isinstance(self.sound_effect, DownloadedSfx):
            return None
        payload = self.sound_effect.payload
        self.sound_effect = ResolvedSfx(effect=self.sound_effect.effect)
        return payload


class MusicTrack(BaseModel):
    """A background music track reference.

    Adjacent chapters using the same track ``id`` form one continuous music cue.
    """

    id: str
    name: str = ""
    artist_name: str = ""
    audio: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value)


class ImageAsset(BaseModel):
    """A background image, either generated, from stock search, or a placeholder."""

    model_config = BINARY_JSON

    url: str | None = None
    payload: bytes | None = Field(default=None, repr=False)
    mime_type: str = "image/png"
    prompt: str = ""
    source: Literal["generated", "stock", "placeholder"] = "generated"
    attribution: str = ""

    @property
    def extension(self) -> str:
        return {"image/jpeg": "jpg", "image/jpg": "jpg", "image/webp": "webp"}.get(self.mime_type, "png")

    def release_payload(self) -> bytes | None:
        payload, self.payload = self.payload, None
        return payload


class Chapter(BaseModel):
    """One chapter of a podcast.

    The chapter's contribution to the master timeline is exactly the duration of its
    decoded ``audio``; script-based estimates are only used before that is known.

    Attributes:
        id: Stable chapter identifier
        title: Chapter title
        script: Ordered script lines
        audio: Encoded speech audio (WAV, MP3, ...), None until synthesized
        status: Generation status, see ``transition``
        error: Human readable cause of the last failure
        background_music: Optional music track for this chapter
        music_volume: Per-chapter music gain override
        music_search_keywords: Keywords used to find ``background_music``
        images: Background images of the chapter
        image_durations: Manual per-image display durations
    """

    model_config = BINARY_JSON

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    title: str
    script: List[ScriptLine] = Field(default_factory=list)
    audio: bytes | None = Field(default=None, repr=False)
    status: ChapterStatus = ChapterStatus.PENDING
    error: str | None = None
    background_music: MusicTrack | None = None
    music_volume: float | None = Field(default=None, ge=0.0)
    music_search_keywords: str | None = None
    images: List[ImageAsset] = Field(default_factory=list)
    image_durations: List[float] | None = None

    def transition(self, status: ChapterStatus, error: str | None = None) -> None:
        """Move the chapter to ``status``.

        Statuses only move forward (pending, script_generating, audio_generating,
        completed). Any status may move to error, and error may move back to pending
        when the chapter is re-queued.

        Raises:
            InvalidStatusTransition: If the move is not allowed
        """
        current = self.status
        if status == ChapterStatus.ERROR:
            allowed = True
        elif current == ChapterStatus.ERROR:
            allowed = status == ChapterStatus.PENDING
        else:
            allowed = _STATUS_ORDER.index(status) > _STATUS_ORDER.index(current)
        if not allowed:
            raise InvalidStatusTransition(f"Chapter {self.id}: cannot move from {current.value} to {status.value}")
        self.status = status
        self.error = error if status == ChapterStatus.ERROR else None


class Character(BaseModel):
    name: str
    description: str = ""
    voice: str | None = None


class Source(BaseModel):
    uri: str
    title: str = ""


class Project(BaseModel):
    """The aggregate root: a podcast with its ordered chapters.

    ``total_duration_minutes`` is a target used for planning only; once chapter audio
    exists, decoded durations are authoritative.
    """

    model_config = BINARY_JSON

    topic: str
    selected_title: str | None = None
    description: str = ""
    language: str = "en"
    total_duration_minutes: float = Field(default=10.0, gt=0)
    narration_mode: NarrationMode = NarrationMode.DIALOGUE
    chapters: List[Chapter] = Field(default_factory=list)
    characters: List[Character] = Field(default_factory=list)
    monologue_voice: str | None = None
    sources: List[Source] = Field(default_factory=list)
    background_music_volume: float = Field(default=0.2, ge=0.0)
    image_source: ImageSourceMode = ImageSourceMode.GENERATED
    pacing_mode: PacingMode = PacingMode.AUTOMATIC

    @property
    def title(self) -> str:
        return self.selected_title or self.topic

    def voice_assignment(self) -> Dict[str, str]:
        return {character.name: character.voice for character in self.characters if character.voice}
