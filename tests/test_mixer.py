import threading

import pytest

from podcast_gen.podcast.mixer import AudioMixer, MixCancelled, NoAudioAssets, PayloadArena
from podcast_gen.podcast_material import (
    Chapter,
    MusicTrack,
    Project,
    ResolvedSfx,
    ScriptLine,
    SoundEffect,
    UnresolvedSfx,
)

SAMPLE_RATE = 8000


def test_master_duration_is_sum_of_chapter_durations(two_chapters):
    master = AudioMixer().mix(Project(topic="Tea", chapters=two_chapters))

    assert master.report.frames == 3 * SAMPLE_RATE
    assert master.duration == pytest.approx(3.0)
    spans = master.report.chapters
    assert [span.chapter_id for span in spans] == ["c1", "c2"]
    assert spans[1].start == pytest.approx(1.0)
    assert spans[1].duration == pytest.approx(2.0)
    assert master.report.chapter_durations() == {"c1": pytest.approx(1.0), "c2": pytest.approx(2.0)}


def test_shared_music_track_fades_only_at_the_ends(make_constant_wav):
    track = MusicTrack(id=7, name="Calm", audio="https://example.com/calm.mp3")
    chapters = [
        Chapter(id="a", title="A", audio=make_constant_wav(30.0, 0.0), background_music=track),
        Chapter(id="b", title="B", audio=make_constant_wav(45.0, 0.0), background_music=track),
    ]
    music = make_constant_wav(10.0, 0.5)
    mixer = AudioMixer(music_loader=lambda t: music)

    master = mixer.mix(Project(topic="Tea", chapters=chapters))
    samples = master.pcm.samples[:, 0]

    first, second = master.report.music_cues
    assert (first.fade_in, first.fade_out) == (True, False)
    assert (second.fade_in, second.fade_out) == (False, True)
    # Full bed level on both sides of the 30s boundary
    assert samples[int(29.9 * SAMPLE_RATE)] == pytest.approx(0.1, abs=1e-3)
    assert samples[30 * SAMPLE_RATE] == pytest.approx(0.1, abs=1e-3)
    # Fade-out at 75s only
    assert 0.0 < samples[int(74.0 * SAMPLE_RATE)] < 0.099
    assert samples[-1] == pytest.approx(0.0, abs=1e-3)
    assert samples[0] == pytest.approx(0.0, abs=1e-3)


def test_music_failure_leaves_chapter_speech_only(two_chapters):
    two_chapters[0].background_music = MusicTrack(id="x", audio="https://example.com/x.mp3")

    def broken_loader(track):
        raise RuntimeError("download failed")

    master = AudioMixer(music_loader=broken_loader).mix(Project(topic="Tea", chapters=two_chapters))

    assert master.duration == pytest.approx(3.0)
    assert master.report.music_cues == []
    assert any("music x" in reason for reason in master.report.skipped)


def test_sfx_start_is_clamped_to_fit_the_master(make_wav, make_sfx_line):
    chapter = Chapter(
        id="c1",
        title="Storm",
        script=[
            ScriptLine(speaker="Host", text="one two three four five six seven eight nine ten"),
            make_sfx_line(3, "distant thunder", make_wav(1.0)),
        ],
        audio=make_wav(2.0),
    )

    master = AudioMixer().mix(Project(topic="Weather", chapters=[chapter]))

    (event,) = master.report.sfx_events
    # Estimated anchor is 4.3s, past the 2s of real speech
    assert event.start == pytest.approx(1.0)
    assert event.start >= 0.0
    assert event.end <= master.duration + 1e-9
    assert event.gain == pytest.approx(0.2)


def test_sfx_gain_depends_on_name_and_line_override(make_wav, make_sfx_line):
    sudden = make_sfx_line(1, "loud crash", make_wav(0.2))
    quiet = make_sfx_line(2, "forest ambience", make_wav(0.2))
    quiet.sound_effect_volume = 0.7
    chapter = Chapter(
        id="c1",
        title="Forest",
        script=[sudden, ScriptLine(speaker="Host", text="Listen."), quiet],
        audio=make_wav(3.0),
    )

    events = AudioMixer().mix(Project(topic="Forest", chapters=[chapter])).report.sfx_events

    assert [event.gain for event in events] == [pytest.approx(0.4), pytest.approx(0.7)]


def test_sfx_without_payload_is_skipped(make_wav):
    chapter = Chapter(
        id="c1",
        title="Quiet",
        script=[
            ScriptLine(speaker="Host", text="Nothing happens here."),
            ScriptLine(speaker="SFX", text="door", sound_effect=UnresolvedSfx(search_keywords="door")),
            ScriptLine(speaker="SFX", text="bell", sound_effect=ResolvedSfx(effect=SoundEffect(id=4, name="bell"))),
            ScriptLine(speaker="SFX", text="nothing attached"),
        ],
        audio=make_wav(2.0),
    )

    master = AudioMixer().mix(Project(topic="Quiet", chapters=[chapter]))

    assert master.report.sfx_events == []
    assert master.duration == pytest.approx(2.0)


def test_payloads_are_released_after_the_mix(make_wav, make_sfx_line):
    payload = make_wav(0.5)
    line = make_sfx_line(9, "door knock", payload)
    chapter = Chapter(
        id="c1", title="Door", script=[ScriptLine(speaker="Host", text="Who is there?"), line], audio=make_wav(2.0)
    )

    master = AudioMixer().mix(Project(topic="Door", chapters=[chapter]))

    assert not line.has_payload
    assert isinstance(line.sound_effect, ResolvedSfx)
    assert master.report.bytes_freed == len(payload)
    assert len(master.report.sfx_events) == 1


def test_mix_is_repeatable_without_release(make_wav, make_sfx_line, two_chapters):
    two_chapters[1].script.append(make_sfx_line(5, "applause", make_wav(0.3)))
    project = Project(topic="Tea", chapters=two_chapters)
    mixer = AudioMixer()

    first = mixer.mix(project, release_payloads=False)
    second = mixer.mix(project, release_payloads=False)

    assert first.report.frames == second.report.frames
    assert first.report.sfx_events == second.report.sfx_events
    assert first.report.music_cues == second.report.music_cues
    assert first.report.bytes_freed == 0


def test_no_decodable_audio_raises():
    chapters = [
        Chapter(id="c1", title="Empty"),
        Chapter(id="c2", title="Broken", audio=b"this is not audio"),
    ]

    with pytest.raises(NoAudioAssets):
        AudioMixer().mix(Project(topic="Nothing", chapters=chapters))


def test_undecodable_chapter_is_left_out(make_wav):
    chapters = [
        Chapter(id="c1", title="One", audio=make_wav(1.0)),
        Chapter(id="c2", title="Broken", audio=b"garbage bytes"),
        Chapter(id="c3", title="Three", audio=make_wav(2.0)),
    ]

    master = AudioMixer().mix(Project(topic="Mixed", chapters=chapters))

    assert master.duration == pytest.approx(3.0)
    assert [span.chapter_id for span in master.report.chapters] == ["c1", "c3"]
    assert len(master.report.skipped) == 1


def test_cancelled_mix_raises(two_chapters):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(MixCancelled) as excinfo:
        AudioMixer().mix(Project(topic="Tea", chapters=two_chapters), cancel_event=cancel)
    assert excinfo.value.chapters_placed == 0


def test_sfx_export_for_renderer(tmp_path, make_wav, make_sfx_line, two_chapters):
    two_chapters[0].script.append(make_sfx_line(12, "whoosh", make_wav(0.25)))

    master = AudioMixer().mix(
        Project(topic="Tea", chapters=two_chapters), include_sfx=False, sfx_export_dir=str(tmp_path)
    )

    (event,) = master.report.sfx_events
    assert event.file_name == "sfx/sfx_12.wav"
    assert (tmp_path / "sfx" / "sfx_12.wav").exists()
    assert master.report.sfx_mixed is False


def test_payload_arena_borrows_without_release(make_wav, make_sfx_line):
    payload = make_wav(0.1)
    line = make_sfx_line(1, "tick", payload)

    with PayloadArena(release=False) as arena:
        assert arena.take_sfx(line) == payload
    assert line.has_payload
    assert arena.bytes_freed == 0
