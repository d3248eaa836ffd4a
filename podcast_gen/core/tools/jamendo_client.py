"""Jamendo API client for background music search."""

from typing import Any, List

from loguru import logger

from podcast_gen.common.tools import cached
from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.http_client import JsonHttpClient
from podcast_gen.core.tools.retry import RetryPolicy
from podcast_gen.podcast.assets import https
from podcast_gen.podcast_material import MusicTrack


class JamendoClient(JsonHttpClient):
    """Search royalty-free tracks by tag keywords."""

    def __init__(
        self,
        client_id: str | None = None,
        base_url: str = "https://api.jamendo.com/v3.0",
        limit: int = 5,
        cache_dir: str | None = None,
        session: Any = None,
        dispatcher: RateLimitedDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__("Music search", session=session, dispatcher=dispatcher, retry_policy=retry_policy)
        self._client_id = client_id or settings.jamendo_client_id
        self._endpoint = f"{base_url.rstrip('/')}/tracks/"
        self._limit = limit
        if cache_dir:
            self.search_tracks = cached(cache_dir=cache_dir)(self.search_tracks)

    def search_tracks(self, keywords: str) -> List[MusicTrack]:
        """Return tracks tagged with any of ``keywords`` (space separated)."""
        data = self.get_json(
            self._endpoint,
            params={
                "client_id": self._client_id or "",
                "format": "json",
                "limit": self._limit,
                "fuzzytags": "+".join(keywords.split()),
                "audioformat": "mp32",
            },
        )
        tracks = [
            MusicTrack(
                id=result["id"],
                name=result.get("name", ""),
                artist_name=result.get("artist_name", ""),
                audio=https(result["audio"]),
            )
            for result in data.get("results", [])
            if result.get("audio")
        ]
        logger.info(f"Music search '{keywords}': {len(tracks)} track(s)")
        return tracks
