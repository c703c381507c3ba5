import pytest

from tableside.core.errors import (
    HTTP_STATUS_BY_KIND,
    AlreadyJoined,
    ErrorKind,
    NotFound,
    ResourceExhausted,
    TableUnavailable,
    ValidationError,
)
from tableside.core.result import Err, Ok, capture


def _lookup(value):
    if value is None:
        raise NotFound("Session not found")
    return value * 2


def test_capture_wraps_value_in_ok():
    result = capture(_lookup, 21)

    assert isinstance(result, Ok)
    assert result.ok is True
    assert result.value == 42


def test_capture_turns_domain_error_into_err():
    result = capture(_lookup, None)

    assert isinstance(result, Err)
    assert result.ok is False
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.to_payload() == {"error": {"kind": "NotFound", "message": "Session not found"}}


def test_capture_lets_unexpected_errors_propagate():
    with pytest.raises(TypeError):
        capture(_lookup, "x", "y")


def test_every_error_kind_has_an_http_status():
    assert set(HTTP_STATUS_BY_KIND) == set(ErrorKind)
    assert TableUnavailable("busy").http_status == 409
    assert AlreadyJoined("again").http_status == 409
    assert ValidationError("bad").http_status == 422
    assert ResourceExhausted("full").http_status == 503
