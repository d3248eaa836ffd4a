import pytest

from podcast_gen.podcast_material import (
    Chapter,
    ChapterStatus,
    DownloadedSfx,
    InvalidStatusTransition,
    Project,
    ResolvedSfx,
    ScriptLine,
    SoundEffect,
    UnresolvedSfx,
)


def test_status_moves_forward_only():
    chapter = Chapter(title="One")
    chapter.transition(ChapterStatus.SCRIPT_GENERATING)
    chapter.transition(ChapterStatus.AUDIO_GENERATING)
    chapter.transition(ChapterStatus.COMPLETED)

    with pytest.raises(InvalidStatusTransition):
        chapter.transition(ChapterStatus.SCRIPT_GENERATING)


def test_error_status_and_requeue():
    chapter = Chapter(title="One")
    chapter.transition(ChapterStatus.AUDIO_GENERATING)
    chapter.transition(ChapterStatus.ERROR, error="Speech synthesis failed")
    assert chapter.error == "Speech synthesis failed"

    with pytest.raises(InvalidStatusTransition):
        chapter.transition(ChapterStatus.COMPLETED)
    chapter.transition(ChapterStatus.PENDING)
    assert chapter.status == ChapterStatus.PENDING
    assert chapter.error is None


def test_preview_urls_ranked_and_upgraded():
    effect = SoundEffect.model_validate(
        {
            "id": 1,
            "previews": {
                "preview-lq-ogg": "http://cdn.example.com/lq.ogg",
                "preview-hq-ogg": "http://cdn.example.com/hq.ogg",
                "preview-lq-mp3": "https://cdn.example.com/lq.mp3",
                "preview-hq-mp3": "http://cdn.example.com/hq.mp3",
            },
        }
    )

    assert effect.preview_urls() == [
        "https://cdn.example.com/hq.mp3",
        "https://cdn.example.com/hq.ogg",
        "https://cdn.example.com/lq.mp3",
        "https://cdn.example.com/lq.ogg",
    ]


def test_sfx_attachment_states():
    line = ScriptLine(speaker="SFX", text="door", sound_effect=UnresolvedSfx(search_keywords="door"))
    assert line.is_sfx
    assert line.effect is None
    with pytest.raises(ValueError):
        line.attach_payload(b"audio")

    line.resolve(SoundEffect(id=3, name="door"))
    assert isinstance(line.sound_effect, ResolvedSfx)
    with pytest.raises(ValueError):
        line.attach_payload(b"")

    line.attach_payload(b"audio")
    assert isinstance(line.sound_effect, DownloadedSfx)
    assert line.release_payload() == b"audio"
    assert isinstance(line.sound_effect, ResolvedSfx)
    assert line.release_payload() is None


def test_project_json_keeps_binary_payloads():
    line = ScriptLine(
        speaker="SFX",
        text="bell",
        sound_effect=DownloadedSfx(effect=SoundEffect(id=2, name="bell"), payload=b"\x00\x01sfx"),
    )
    project = Project(topic="Tea", chapters=[Chapter(id="c1", title="One", script=[line], audio=b"RIFF\x00speech")])

    restored = Project.model_validate_json(project.model_dump_json())

    assert restored.chapters[0].audio == b"RIFF\x00speech"
    assert restored.chapters[0].script[0].sound_effect.payload == b"\x00\x01sfx"
    assert restored.chapters[0].script[0].sound_effect.kind == "downloaded"


def test_project_defaults():
    project = Project(topic="Tea")
    assert project.title == "Tea"
    assert project.background_music_volume == 0.2
    assert Project(topic="Tea", selected_title="All about tea").title == "All about tea"
