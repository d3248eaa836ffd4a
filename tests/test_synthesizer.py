import subprocess

import pytest

from podcast_gen.podcast import synthesizer
from podcast_gen.podcast.models import FilterStage, RenderInput, RenderPlan


def _plan():
    return RenderPlan(
        inputs=[RenderInput(kind="image", path="images/img_000.png"), RenderInput(kind="audio", path="audio.wav")],
        stages=[
            FilterStage(inputs=["0:v"], filter="null", outputs=["outv"]),
            FilterStage(inputs=["1:a"], filter="anull", outputs=["outa"]),
        ],
        duration=12.0,
        width=1280,
        height=720,
        fps=30,
    )


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "images").mkdir()
    (tmp_path / "images" / "img_000.png").write_bytes(b"png")
    (tmp_path / "audio.wav").write_bytes(b"wav")
    return tmp_path


def _fake_ffmpeg(monkeypatch, returncode=0):
    calls = []

    def invoke(cmd, cwd=None):
        calls.append((cmd, cwd))
        return subprocess.CompletedProcess(cmd, returncode, "out", "boom" if returncode else "")

    monkeypatch.setattr(synthesizer, "get_ffmpeg_path", lambda: "/usr/bin/ffmpeg")
    monkeypatch.setattr(synthesizer, "invoke_command", invoke)
    return calls


def test_render_runs_ffmpeg_in_the_workdir(monkeypatch, workdir):
    calls = _fake_ffmpeg(monkeypatch)

    video = synthesizer.render_plan(_plan(), str(workdir), preview_duration=5.0)

    (cmd, cwd), = calls
    assert cwd == str(workdir)
    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-filter_complex_script") + 1] == "filter_complex.txt"
    assert cmd[-3:] == ["-t", "5.000", "podcast.mp4"]
    assert (workdir / "filter_complex.txt").read_text() == "[0:v]null[outv];\n[1:a]anull[outa]"
    assert video == str(workdir / "podcast.mp4")


def test_ffmpeg_failure_raises(monkeypatch, workdir):
    _fake_ffmpeg(monkeypatch, returncode=1)

    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        synthesizer.render_plan(_plan(), str(workdir))
    assert excinfo.value.stderr == "boom"


def test_missing_input_or_ffmpeg_raises(monkeypatch, workdir):
    calls = _fake_ffmpeg(monkeypatch)
    (workdir / "audio.wav").unlink()

    with pytest.raises(FileNotFoundError, match="audio.wav"):
        synthesizer.render_plan(_plan(), str(workdir))

    monkeypatch.setattr(synthesizer, "get_ffmpeg_path", lambda: None)
    with pytest.raises(FileNotFoundError, match="ffmpeg"):
        synthesizer.render_plan(_plan(), str(workdir))
    assert calls == []
