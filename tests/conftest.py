import io

import numpy as np
import pytest
import requests

from podcast_gen.podcast.audio_codec import PcmBuffer, encode_audio
from podcast_gen.podcast_material import Chapter, DownloadedSfx, ScriptLine, SoundEffect

SAMPLE_RATE = 8000


def tone_wav(duration: float, sample_rate: int = SAMPLE_RATE, channels: int = 1, amplitude: float = 0.1) -> bytes:
    frames = int(round(duration * sample_rate))
    t = np.arange(frames) / sample_rate
    samples = (amplitude * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    return encode_audio(PcmBuffer(np.repeat(samples[:, None], channels, axis=1), sample_rate))


def constant_wav(duration: float, value: float, sample_rate: int = SAMPLE_RATE) -> bytes:
    frames = int(round(duration * sample_rate))
    return encode_audio(PcmBuffer(np.full((frames, 1), value, dtype=np.float32), sample_rate))


def png_bytes(width: int = 64, height: int = 36) -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (200, 120, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


def downloaded_sfx_line(effect_id: int, name: str, payload: bytes, text: str = "effect") -> ScriptLine:
    effect = SoundEffect(id=effect_id, name=name)
    return ScriptLine(speaker="SFX", text=text, sound_effect=DownloadedSfx(effect=effect, payload=payload))


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200, content_type: str = "audio/mpeg", data=None):
        self.content = content
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self._data = data

    def json(self):
        return self._data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Serves canned responses by URL and records every request."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append((url, params))
        response = self.responses.get(url)
        if response is None:
            return FakeResponse(status_code=404, content_type="text/plain")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def make_wav():
    return tone_wav


@pytest.fixture
def make_constant_wav():
    return constant_wav


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def make_sfx_line():
    return downloaded_sfx_line


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def two_chapters():
    """Two chapters of 1s and 2s speech."""
    return [
        Chapter(
            id="c1",
            title="Opening",
            script=[
                ScriptLine(speaker="Host", text="Welcome to the show about tea."),
                ScriptLine(speaker="Guest", text="Thanks for having me."),
            ],
            audio=tone_wav(1.0),
        ),
        Chapter(
            id="c2",
            title="History",
            script=[ScriptLine(speaker="Host", text="Tea was first brewed in China thousands of years ago.")],
            audio=tone_wav(2.0),
        ),
    ]
