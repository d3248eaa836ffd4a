import json

import requests

from podcast_gen.core.tools.errors import (
    CollaboratorError,
    ErrorKind,
    as_collaborator_error,
    classify_exception,
    classify_status,
)


def test_classify_status():
    assert classify_status(429) == ErrorKind.RATE_LIMITED
    assert classify_status(503) == ErrorKind.SERVER_UNAVAILABLE
    assert classify_status(408) == ErrorKind.NETWORK_FAILURE
    assert classify_status(401) == ErrorKind.FATAL
    assert classify_status(None) == ErrorKind.FATAL


def test_classify_requests_exceptions():
    response = requests.Response()
    response.status_code = 502
    assert classify_exception(requests.HTTPError(response=response)) == ErrorKind.SERVER_UNAVAILABLE
    assert classify_exception(requests.Timeout()) == ErrorKind.NETWORK_FAILURE
    assert classify_exception(requests.ConnectionError()) == ErrorKind.NETWORK_FAILURE


def test_classify_decoding_errors_and_messages():
    assert classify_exception(json.JSONDecodeError("bad", "{", 0)) == ErrorKind.MALFORMED_RESPONSE
    assert classify_exception(RuntimeError("Model is overloaded")) == ErrorKind.SERVER_UNAVAILABLE
    assert classify_exception(RuntimeError("Rate limit reached for requests")) == ErrorKind.RATE_LIMITED
    assert classify_exception(RuntimeError("boom")) == ErrorKind.FATAL


def test_retryable_kinds():
    assert ErrorKind.RATE_LIMITED.retryable
    assert ErrorKind.NETWORK_FAILURE.retryable
    assert not ErrorKind.MALFORMED_RESPONSE.retryable
    assert not ErrorKind.FATAL.retryable


def test_user_message_names_the_layer():
    error = CollaboratorError(ErrorKind.RATE_LIMITED, "Sound effect search", detail="429 from freesound")

    assert str(error) == (
        "Sound effect search failed: the service is rate limiting requests, try again in a few minutes "
        "(429 from freesound)"
    )
    assert error.retryable


def test_as_collaborator_error_keeps_the_cause():
    cause = requests.Timeout("read timed out")
    error = as_collaborator_error(cause, "Music download")

    assert error.kind == ErrorKind.NETWORK_FAILURE
    assert error.cause is cause
    assert as_collaborator_error(error, "Other layer") is error
