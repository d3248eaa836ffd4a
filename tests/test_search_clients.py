import base64

import pytest

from podcast_gen.core.tools import volcengine_client
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.freesound_client import FreesoundClient
from podcast_gen.core.tools.jamendo_client import JamendoClient
from podcast_gen.core.tools.pexels_client import PexelsClient
from podcast_gen.core.tools.retry import RetryPolicy

FREESOUND_URL = "https://freesound.org/apiv2/search/text/"


def _options(session):
    return {"session": session, "dispatcher": RateLimitedDispatcher(), "retry_policy": RetryPolicy(attempts=1)}


def test_freesound_search(fake_session, fake_response):
    data = {
        "results": [
            {
                "id": 42,
                "name": "door creak",
                "license": "http://creativecommons.org/publicdomain/zero/1.0/",
                "username": "foley",
                "previews": {
                    "preview-lq-mp3": "http://cdn.freesound.org/42-lq.mp3",
                    "preview-hq-mp3": "http://cdn.freesound.org/42-hq.mp3",
                },
            }
        ]
    }
    session = fake_session({FREESOUND_URL: fake_response(data=data, content_type="application/json")})

    effects = FreesoundClient(api_key="key", **_options(session)).search("door creak")

    assert [effect.id for effect in effects] == [42]
    assert effects[0].preview_urls() == ["https://cdn.freesound.org/42-hq.mp3", "https://cdn.freesound.org/42-lq.mp3"]
    assert session.requests[0][1]["query"] == "door creak"


def test_freesound_search_is_cached(tmp_path, fake_session, fake_response):
    session = fake_session({FREESOUND_URL: fake_response(data={"results": []}, content_type="application/json")})
    client = FreesoundClient(api_key="key", cache_dir=str(tmp_path), **_options(session))

    assert client.search("rain") == []
    assert client.search("rain") == []
    assert len(session.requests) == 1


def test_freesound_rate_limit_is_classified(fake_session, fake_response):
    session = fake_session({FREESOUND_URL: fake_response(status_code=429, content_type="application/json")})

    with pytest.raises(CollaboratorError) as excinfo:
        FreesoundClient(api_key="key", **_options(session)).search("rain")
    assert excinfo.value.kind == ErrorKind.RATE_LIMITED
    assert excinfo.value.layer == "Sound effect search"


def test_jamendo_tracks(fake_session, fake_response):
    data = {
        "results": [
            {"id": 123, "name": "Calm Waters", "artist_name": "Ann", "audio": "http://jamendo.example.com/123.mp3"},
            {"id": 124, "name": "No audio", "artist_name": "Bob", "audio": ""},
        ]
    }
    session = fake_session({"https://api.jamendo.com/v3.0/tracks/": fake_response(data=data)})

    tracks = JamendoClient(client_id="id", **_options(session)).search_tracks("calm piano")

    assert [(track.id, track.audio) for track in tracks] == [("123", "https://jamendo.example.com/123.mp3")]
    assert session.requests[0][1]["fuzzytags"] == "calm+piano"


def test_pexels_images(fake_session, fake_response):
    data = {"photos": [{"photographer": "Ann", "src": {"landscape": "https://images.pexels.com/1.jpg"}}, {"src": {}}]}
    session = fake_session({"https://api.pexels.com/v1/search": fake_response(data=data)})

    images = PexelsClient(api_key="key", **_options(session)).get_images("tea field", count=2)

    assert len(images) == 1
    assert images[0].url == "https://images.pexels.com/1.jpg"
    assert images[0].source == "stock"
    assert images[0].attribution == "Photo by Ann on Pexels"


def test_volcengine_images_go_through_the_dispatcher(monkeypatch, fake_response, make_png):
    png = make_png()
    image = {"created": 1, "data": [{"b64_json": base64.b64encode(png).decode()}]}
    answers = [
        fake_response(data=image),
        fake_response(data=image),
        fake_response(data={"created": 1, "data": []}),
    ]
    posted = []

    def post(url, headers=None, json=None, timeout=None):
        posted.append((url, json))
        return answers.pop()

    monkeypatch.setattr(volcengine_client.requests, "post", post)
    dispatcher = RateLimitedDispatcher(max_concurrency=2, name="volcengine")
    client = volcengine_client.VolcengineImageClient(api_key="key", dispatcher=dispatcher)

    images = client.get_images("a teapot at dawn", count=3)

    assert dispatcher.dispatched == 3
    assert len(posted) == 3
    assert posted[0][0] == "https://ark.cn-beijing.volces.com/api/v3/images/generations"
    assert posted[0][1]["prompt"] == "a teapot at dawn"
    assert len(images) == 2
    assert images[0].payload == png
    assert (images[0].mime_type, images[0].source) == ("image/png", "generated")
