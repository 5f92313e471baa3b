import logging

import pytest
from bson.errors import InvalidBSON
from pymongo.errors import DocumentTooLarge, DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from errors import (
    ERROR_MESSAGES,
    NotFoundError,
    ServiceError,
    ValidationError,
    action,
    normalize_error,
)
from schemas import Review


@pytest.mark.parametrize("error, code", [
    (DuplicateKeyError("E11000 duplicate key", code=11000), "already-exists"),
    (ServerSelectionTimeoutError("no servers"), "unavailable"),
    (DocumentTooLarge("too big"), "out-of-range"),
    (InvalidBSON("bad bytes"), "data-loss"),
    (OperationFailure("not authorized", code=13), "permission-denied"),
    (OperationFailure("auth failed", code=18), "unauthenticated"),
    (OperationFailure("write conflict", code=112), "aborted"),
    (OperationFailure("memory", code=292), "resource-exhausted"),
    (OperationFailure("no such command", code=115), "unimplemented"),
    (OperationFailure("something odd", code=9999), "internal"),
])
def test_store_errors_map_to_stable_codes(error, code):
    normalized = normalize_error(error)
    assert normalized.code == code
    assert normalized.message == ERROR_MESSAGES[code]
    assert normalized.original is error


def test_unknown_errors_keep_their_message():
    normalized = normalize_error(RuntimeError("boom"))
    assert normalized.code == "unknown"
    assert normalized.message == "boom"


def test_schema_errors_are_invalid_argument():
    with pytest.raises(Exception) as exc:
        Review.model_validate({"reviewer_id": "a", "reviewee_id": "b", "rating": 9})
    assert normalize_error(exc.value).code == "invalid-argument"


def test_service_errors_pass_through():
    error = NotFoundError("gone")
    assert normalize_error(error) is error
    assert error.status_code == 404
    assert ValidationError("bad").status_code == 400
    assert ServiceError("x", "data-loss").status_code == 500


def test_action_normalizes_logs_and_reraises(caplog):
    calls = []

    @action
    def flaky():
        calls.append(1)
        raise OperationFailure("not authorized", code=13)

    with caplog.at_level(logging.ERROR, logger="errors"):
        with pytest.raises(ServiceError) as exc:
            flaky()

    assert exc.value.code == "permission-denied"
    assert isinstance(exc.value.__cause__, OperationFailure)
    assert calls == [1]
    assert "flaky" in caplog.text


def test_action_returns_value_untouched():
    @action
    def ok(x):
        return x * 2

    assert ok(21) == 42
