import pytest

from jmapbridge.domain.errors import (
    AuthError,
    ConfigurationError,
    ErrorKind,
    InvalidBatchError,
    NetworkError,
    ProtocolError,
    RateLimitedError,
    RequestError,
    TransientNetworkError,
    error_for_kind,
    kind_of,
)


def test_hierarchy():
    assert issubclass(NetworkError, TransientNetworkError)
    assert issubclass(RateLimitedError, TransientNetworkError)
    assert issubclass(ProtocolError, RequestError)
    assert issubclass(InvalidBatchError, ValueError)


@pytest.mark.parametrize("exc, kind", [
    (AuthError("x"), ErrorKind.AUTH),
    (RequestError("x"), ErrorKind.REQUEST),
    (ProtocolError("x"), ErrorKind.REQUEST),
    (NetworkError("x"), ErrorKind.TRANSIENT_NETWORK),
    (RateLimitedError("x"), ErrorKind.RATE_LIMITED),
    (InvalidBatchError("x"), ErrorKind.INVALID_BATCH),
    (RuntimeError("x"), ErrorKind.TRANSIENT_NETWORK),
])
def test_kind_of(exc, kind):
    assert kind_of(exc) is kind


def test_error_for_kind_round_trips_kind():
    for kind in ErrorKind:
        assert kind_of(error_for_kind(kind, "m")) is kind


def test_protocol_error_type_and_status():
    error = ProtocolError("broken", http_status=200)
    assert error.error_type == "protocolError"
    assert error.http_status == 200


def test_configuration_error_is_engine_error():
    assert isinstance(ConfigurationError("missing"), Exception)
    assert ConfigurationError.kind is None
