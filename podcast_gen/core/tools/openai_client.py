import asyncio
import json
from typing import Any, Dict, List

from loguru import logger
from openai import AsyncOpenAI

from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.retry import RetryPolicy, async_call_with_retries


def _json_candidates(input_str: str) -> List[str]:
    """Substrings of ``input_str`` that may hold the JSON payload, most specific first."""
    candidates = []
    if "```json" in input_str:
        candidates.append(input_str.split("```json")[1].split("```")[0])
    parts = input_str.split("```")
    if len(parts) >= 3:
        candidates.append(parts[1])
    for opening, closing in (("{", "}"), ("[", "]")):
        start, end = input_str.find(opening), input_str.rfind(closing)
        if start != -1 and end > start:
            candidates.append(input_str[start : end + 1])
    candidates.append(input_str)
    return [candidate.strip() for candidate in candidates]


def extract_json_object(input_str: str, fixed_quotes: bool = False) -> Any:
    """Extract a JSON object from a model answer with multiple fallback strategies.

    The strategies are tried in order:
    - JSON in ```json code blocks
    - JSON in ``` code blocks (without json marker)
    - JSON between { and } (objects)
    - JSON between [ and ] (arrays)
    - Direct JSON string parsing

    Args:
        input_str (str): The input string to extract the JSON object from.
        fixed_quotes (bool, optional): Whether to fix unescaped quotes in the JSON object. Defaults to False.

    Returns:
        Any: The extracted JSON object (dict or list).

    Raises:
        json.JSONDecodeError: If all extraction strategies fail.
    """
    if not input_str or not isinstance(input_str, str):
        raise json.JSONDecodeError("Input is empty or not a string", "", 0)

    for candidate in _json_candidates(input_str):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            if not fixed_quotes:
                continue
        try:
            return json.loads(_fixed_unescaped_json_quotes(candidate))
        except json.JSONDecodeError:
            continue

    raise json.JSONDecodeError("Failed to extract JSON from string", input_str, 0)


def _fixed_unescaped_json_quotes(input_str: str) -> str:
    """Escape double quotes that appear inside JSON string values."""
    result = []
    in_quotes = False
    i = 0
    while i < len(input_str):
        c = input_str[i]
        if c == "\\":
            result.append(input_str[i : i + 2])
            i += 2
            continue
        if c == '"':
            if not in_quotes:
                in_quotes = True
                result.append(c)
            elif i == len(input_str) - 1 or input_str[i + 1 :].lstrip()[:1] in (":", ",", "}", "]"):
                in_quotes = False
                result.append(c)
            else:
                result.append('\\"')
        else:
            result.append(c)
        i += 1
    return "".join(result)


class OpenAIClient:
    """Text generation and speech synthesis on an OpenAI compatible endpoint.

    Calls go through a dispatcher (bounded concurrency, paced starts) and transient
    failures are retried with backoff. When the primary text model keeps failing with
    a retryable error, the fallback model is tried once.

    Args:
        api_key: API key, defaults to settings.openai_api_key
        base_url: Endpoint, defaults to settings.openai_base_url
        model_name: Primary text model
        fallback_model_name: Text model used when the primary one is unavailable
        tts_model_name: Speech model
        dispatcher: Shared dispatcher for this endpoint
        retry_policy: Retry policy for transient failures
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model_name: str | None = None,
        fallback_model_name: str | None = None,
        tts_model_name: str | None = None,
        dispatcher: RateLimitedDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ) -> None:
        self._model_name = model_name or settings.text_model
        self._fallback_model_name = fallback_model_name or settings.fallback_text_model
        self._tts_model_name = tts_model_name or settings.tts_model
        self._client = AsyncOpenAI(
            api_key=api_key or settings.openai_api_key, base_url=base_url or settings.openai_base_url, **kwargs
        )
        self._dispatcher = dispatcher or RateLimitedDispatcher.from_settings(name="openai")
        self._retry_policy = retry_policy or RetryPolicy.from_settings()

    async def _complete(self, model: str, instruction: str, user_input: str, **kwargs) -> str:
        completion = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": instruction},
                {"role": "user", "content": user_input},
            ],
            **kwargs,
        )
        if len(completion.choices) == 0 or not completion.choices[0].message.content:
            raise CollaboratorError(ErrorKind.MALFORMED_RESPONSE, "Text generation", detail="empty completion")
        return completion.choices[0].message.content

    async def async_generate(self, instruction: str, user_input: str, **kwargs) -> str:
        """Generate a single-turn response from the model.

        Args:
            instruction (str): The system instruction to the model.
            user_input (str): The user input to the model.
            **kwargs: Additional arguments to pass to the OpenAI API.

        Returns:
            str: The generated response from the model.

        Raises:
            CollaboratorError: If both the primary and the fallback model fail.
        """
        try:
            return await async_call_with_retries(
                self._dispatcher.submit,
                self._complete,
                self._model_name,
                instruction,
                user_input,
                layer="Text generation",
                policy=self._retry_policy,
                **kwargs,
            )
        except CollaboratorError as e:
            if not e.retryable or not self._fallback_model_name:
                raise
            logger.warning(
                f"Model {self._model_name} unavailable ({e.kind.value}), falling back to {self._fallback_model_name}"
            )
        return await async_call_with_retries(
            self._dispatcher.submit,
            self._complete,
            self._fallback_model_name,
            instruction,
            user_input,
            layer="Text generation (fallback model)",
            policy=self._retry_policy,
            **kwargs,
        )

    def generate(self, instruction: str, user_input: str, **kwargs) -> str:
        """The synchronous version of async_generate."""
        return asyncio.run(self.async_generate(instruction, user_input, **kwargs))

    async def _speak(self, text: str, voice: str, response_format: str, instructions: str | None) -> bytes:
        extra: Dict[str, Any] = {"instructions": instructions} if instructions else {}
        response = await self._client.audio.speech.create(
            model=self._tts_model_name, voice=voice, input=text, response_format=response_format, **extra
        )
        payload = response.content
        if not payload:
            raise CollaboratorError(ErrorKind.MALFORMED_RESPONSE, "Speech synthesis", detail="empty audio")
        return payload

    async def async_speech(
        self, text: str, voice: str, response_format: str = "wav", instructions: str | None = None
    ) -> bytes:
        """Synthesize ``text`` with ``voice`` and return the encoded audio."""
        return await async_call_with_retries(
            self._dispatcher.submit,
            self._speak,
            text,
            voice,
            response_format,
            instructions,
            layer="Speech synthesis",
            policy=self._retry_policy,
        )

    def speech(self, text: str, voice: str, response_format: str = "wav", instructions: str | None = None) -> bytes:
        """The synchronous version of async_speech."""
        return asyncio.run(self.async_speech(text, voice, response_format, instructions))
