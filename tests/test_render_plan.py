import re

import pytest

from podcast_gen.core.configs.assembly import RenderConfig
from podcast_gen.podcast.models import SfxEvent
from podcast_gen.podcast.render_plan import RenderPlanBuilder, escape_filter_value, manual_overrides
from podcast_gen.podcast_material import Chapter, ImageAsset, PacingMode, Project


def _project(image_count: int, pacing_mode: PacingMode = PacingMode.AUTOMATIC) -> Project:
    images = [ImageAsset(url=f"https://example.com/{i}.jpg", mime_type="image/jpeg") for i in range(image_count)]
    return Project(topic="t", chapters=[Chapter(id="c1", title="One", images=images)], pacing_mode=pacing_mode)


def _frame_counts(plan):
    return [int(value) for stage in plan.stages for value in re.findall(r":d=(\d+)", stage.filter)]


def test_plan_without_sfx():
    plan = RenderPlanBuilder().build(_project(2), 20.0)

    assert [render_input.kind for render_input in plan.inputs] == ["image", "image", "audio"]
    assert plan.inputs[0].path == "images/img_000.jpg"
    assert plan.inputs[2].path == "audio.wav"
    assert len(plan.stages) == 5
    assert "zoompan" in plan.stages[0].filter
    assert plan.stages[2].filter == "concat=n=2:v=1:a=0"
    assert plan.stages[3].filter.startswith("subtitles=subtitles.srt:force_style='FontName=Inter,FontSize=32")
    assert str(plan.stages[-1]) == "[2:a]anull[outa]"
    assert (plan.video_output, plan.audio_output) == ("outv", "outa")
    assert _frame_counts(plan) == [300, 300]


def test_sfx_are_chained_through_two_input_mixes():
    events = [
        SfxEvent(
            chapter_id="c1", line_index=1, effect_id=3, start=1.5, duration=1.0, gain=0.4, file_name="sfx/sfx_3.wav"
        ),
        SfxEvent(
            chapter_id="c1", line_index=4, effect_id=8, start=7.25, duration=2.0, gain=0.2, file_name="sfx/sfx_8.wav"
        ),
        SfxEvent(chapter_id="c1", line_index=6, effect_id=9, start=9.0, duration=1.0, gain=0.2),
    ]

    plan = RenderPlanBuilder().build(_project(1), 12.0, sfx_events=events)

    assert [render_input.kind for render_input in plan.inputs] == ["image", "audio", "sfx", "sfx"]
    audio_stages = [str(stage) for stage in plan.stages[3:]]
    assert audio_stages == [
        "[2:a]adelay=1500:all=1,volume=0.400[sfx0]",
        "[1:a][sfx0]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[amix0]",
        "[3:a]adelay=7250:all=1,volume=0.200[sfx1]",
        "[amix0][sfx1]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[outa]",
    ]


def test_frame_counts_do_not_drift():
    plan = RenderPlanBuilder().build(_project(3), 20.0)
    assert _frame_counts(plan) == [200, 200, 200]

    plan = RenderPlanBuilder().build(_project(7), 61.3)
    assert sum(_frame_counts(plan)) == round(61.3 * 30)


def test_manual_pacing_uses_chapter_durations():
    project = _project(2, PacingMode.MANUAL)
    project.chapters[0].image_durations = [3.0, 9.0]

    schedule = RenderPlanBuilder().schedule(project, 12.0)

    assert [(slot.pool_index, slot.duration) for slot in schedule] == [(0, 3.0), (1, 9.0)]
    assert schedule[1].start == pytest.approx(3.0)
    assert manual_overrides(_project(2)) is None


def test_command_and_shell_script():
    plan = RenderPlanBuilder().build(_project(1), 5.0, audio_file="audio.mp3")

    cmd = plan.command("out.mp4", filter_script="filter_complex.txt")

    assert cmd[:4] == ["ffmpeg", "-y", "-i", "images/img_000.jpg"]
    assert cmd[cmd.index("-filter_complex_script") + 1] == "filter_complex.txt"
    assert cmd[cmd.index("-map") + 1] == "[outv]"
    assert "[outa]" in cmd
    assert cmd[-3:] == ["-t", "5.000", "out.mp4"]
    inline = plan.command()
    assert ";" in inline[inline.index("-filter_complex") + 1]
    script = plan.shell_script("podcast.mp4")
    assert script.startswith("#!/bin/sh\n")
    assert "-filter_complex_script filter_complex.txt" in script


def test_project_without_images_cannot_be_planned():
    with pytest.raises(ValueError):
        RenderPlanBuilder().schedule(_project(0), 10.0)


def test_subtitle_path_is_escaped_for_the_filter_graph():
    assert escape_filter_value("subtitles.srt") == "subtitles.srt"
    assert escape_filter_value("subs/it's: a,b.srt") == r"subs/it\\\'s\\: a\,b.srt"

    config = RenderConfig(subtitle_file="C:/subs/tea.srt")
    plan = RenderPlanBuilder(config).build(_project(1), 10.0)

    assert r"subtitles=C\\:/subs/tea.srt:force_style='" in plan.filter_complex()
