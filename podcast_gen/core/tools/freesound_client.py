"""Freesound API client for sound effect search."""

from typing import Any, List

from loguru import logger

from podcast_gen.common.tools import cached
from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.http_client import JsonHttpClient
from podcast_gen.core.tools.retry import RetryPolicy
from podcast_gen.podcast_material import SoundEffect

SEARCH_FIELDS = "id,name,previews,license,username"


class FreesoundClient(JsonHttpClient):
    """Text search over Freesound.

    Args:
        api_key: Freesound API token, defaults to settings.freesound_api_key
        base_url: API base URL
        page_size: Maximum number of results per search
        cache_dir: When set, search results are cached on disk
        session: requests-compatible session
        dispatcher: Dispatcher shared with other Freesound callers
        retry_policy: Retry policy for transient failures

    Example:
        >>> client = FreesoundClient(cache_dir="/tmp/cached/freesound")
        >>> effects = client.search("door creak old house")
        >>> effects[0].preview_urls()[0]
        'https://cdn.freesound.org/previews/...-hq.mp3'
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://freesound.org/apiv2",
        page_size: int = 5,
        cache_dir: str | None = None,
        session: Any = None,
        dispatcher: RateLimitedDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__("Sound effect search", session=session, dispatcher=dispatcher, retry_policy=retry_policy)
        self._api_key = api_key or settings.freesound_api_key
        self._endpoint = f"{base_url.rstrip('/')}/search/text/"
        self._page_size = page_size
        if cache_dir:
            self.search = cached(cache_dir=cache_dir)(self.search)

    def search(self, keywords: str) -> List[SoundEffect]:
        """Return sound effects matching ``keywords``, best match first."""
        data = self.get_json(
            self._endpoint,
            params={
                "query": keywords,
                "fields": SEARCH_FIELDS,
                "page_size": self._page_size,
                "token": self._api_key or "",
            },
        )
        effects = [SoundEffect.model_validate(result) for result in data.get("results", [])]
        logger.info(f"Sound effect search '{keywords}': {len(effects)} result(s)")
        return effects
