"""Error kinds for calls to external collaborators.

Every collaborator converts its upstream failure into a ``CollaboratorError`` once, at
its boundary, so the rest of the code switches on ``ErrorKind`` instead of inspecting
status codes or error strings.
"""

import json
from enum import Enum

import openai
import requests
from pydantic import ValidationError


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_UNAVAILABLE = "server_unavailable"
    NETWORK_FAILURE = "network_failure"
    MALFORMED_RESPONSE = "malformed_response"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.SERVER_UNAVAILABLE, ErrorKind.NETWORK_FAILURE)


_DESCRIPTIONS = {
    ErrorKind.RATE_LIMITED: "the service is rate limiting requests, try again in a few minutes",
    ErrorKind.SERVER_UNAVAILABLE: "the service is temporarily unavailable",
    ErrorKind.NETWORK_FAILURE: "the service could not be reached",
    ErrorKind.MALFORMED_RESPONSE: "the service returned data in an unexpected format",
    ErrorKind.FATAL: "the request was rejected",
}

# Lower-case fragments of upstream messages, checked in order.
_MESSAGE_HINTS = [
    ("rate limit", ErrorKind.RATE_LIMITED),
    ("too many requests", ErrorKind.RATE_LIMITED),
    ("overloaded", ErrorKind.SERVER_UNAVAILABLE),
    ("unavailable", ErrorKind.SERVER_UNAVAILABLE),
    ("timed out", ErrorKind.NETWORK_FAILURE),
    ("connection reset", ErrorKind.NETWORK_FAILURE),
    ("failed to fetch", ErrorKind.NETWORK_FAILURE),
]


class CollaboratorError(Exception):
    """A failed call to an external collaborator.

    Attributes:
        kind: Classified cause of the failure
        layer: Name of the collaborator that failed (e.g. "Script generation")
        detail: Optional extra context for the user message
        cause: The original upstream exception, if any
    """

    def __init__(self, kind: ErrorKind, layer: str, detail: str = "", cause: BaseException | None = None):
        self.kind = kind
        self.layer = layer
        self.detail = detail
        self.cause = cause
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        message = f"{self.layer} failed: {_DESCRIPTIONS[self.kind]}"
        if self.detail:
            message += f" ({self.detail})"
        return message

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


def classify_status(status_code: int | None) -> ErrorKind:
    """Map an HTTP status code onto an error kind."""
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (500, 502, 503, 504):
        return ErrorKind.SERVER_UNAVAILABLE
    if status_code == 408:
        return ErrorKind.NETWORK_FAILURE
    return ErrorKind.FATAL


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised by an upstream client onto an error kind.

    Args:
        exc: Exception raised by requests, openai, json or pydantic

    Returns:
        ErrorKind: The classified kind, FATAL when nothing more specific applies
    """
    if isinstance(exc, CollaboratorError):
        return exc.kind

    # openai exceptions, most specific first
    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return ErrorKind.NETWORK_FAILURE
    if isinstance(exc, openai.InternalServerError):
        return ErrorKind.SERVER_UNAVAILABLE
    if isinstance(exc, openai.APIStatusError):
        return classify_status(exc.status_code)

    # requests exceptions
    if isinstance(exc, requests.HTTPError):
        status_code = exc.response.status_code if exc.response is not None else None
        return classify_status(status_code)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return ErrorKind.NETWORK_FAILURE

    if isinstance(exc, (json.JSONDecodeError, ValidationError)):
        return ErrorKind.MALFORMED_RESPONSE
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK_FAILURE

    message = str(exc).lower()
    for hint, kind in _MESSAGE_HINTS:
        if hint in message:
            return kind
    return ErrorKind.FATAL


def as_collaborator_error(exc: BaseException, layer: str, detail: str = "") -> CollaboratorError:
    """Wrap ``exc`` into a CollaboratorError for ``layer``, keeping an existing one as is."""
    if isinstance(exc, CollaboratorError):
        return exc
    return CollaboratorError(classify_exception(exc), layer, detail=detail, cause=exc)
