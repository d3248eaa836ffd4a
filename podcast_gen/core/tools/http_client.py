from typing import Any, Dict

import requests

from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.retry import RetryPolicy, call_with_retries


class JsonHttpClient:
    """Base of the JSON search clients: paced, retried GET requests.

    Args:
        layer: Collaborator name used in logs and errors
        session: requests-compatible session (anything with ``get``)
        dispatcher: Dispatcher shared by every client of the same service
        retry_policy: Retry policy, defaults to the configured one
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        layer: str,
        session: Any = None,
        dispatcher: RateLimitedDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.layer = layer
        self.session = session or requests.Session()
        self.dispatcher = dispatcher or RateLimitedDispatcher.from_settings(name=layer)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.timeout = timeout

    def get_json(self, url: str, params: Dict[str, Any] | None = None, headers: Dict[str, str] | None = None) -> Any:
        """GET ``url`` and decode the JSON body.

        Raises:
            CollaboratorError: On HTTP, network or decoding failure, after retries
        """

        def _get() -> Any:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        return call_with_retries(self.dispatcher.call, _get, layer=self.layer, policy=self.retry_policy)
