"""
Error taxonomy and the action wrapper.

Every data-mutating action is wrapped with `action`, which turns whatever the
store raised into a ServiceError carrying a stable code and a user-facing
message, logs it, and re-raises it. Nothing is retried.
"""

import functools
import logging
from typing import Optional

from bson.errors import BSONError, InvalidBSON
from pydantic import ValidationError as SchemaError
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DocumentTooLarge,
    DuplicateKeyError,
    ExecutionTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "permission-denied"
NOT_FOUND = "not-found"
ALREADY_EXISTS = "already-exists"
RESOURCE_EXHAUSTED = "resource-exhausted"
FAILED_PRECONDITION = "failed-precondition"
ABORTED = "aborted"
OUT_OF_RANGE = "out-of-range"
UNIMPLEMENTED = "unimplemented"
INTERNAL = "internal"
UNAVAILABLE = "unavailable"
DATA_LOSS = "data-loss"
UNAUTHENTICATED = "unauthenticated"
INVALID_ARGUMENT = "invalid-argument"
UNKNOWN = "unknown"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "You do not have permission to perform this action",
    NOT_FOUND: "The requested resource was not found",
    ALREADY_EXISTS: "This resource already exists",
    RESOURCE_EXHAUSTED: "You have exceeded your quota",
    FAILED_PRECONDITION: "The operation was rejected because the system is not in a state required for the operation's execution",
    ABORTED: "The operation was aborted",
    OUT_OF_RANGE: "The operation was attempted past the valid range",
    UNIMPLEMENTED: "The operation is not implemented or not supported",
    INTERNAL: "An internal error occurred",
    UNAVAILABLE: "The service is currently unavailable",
    DATA_LOSS: "Unrecoverable data loss or corruption",
    UNAUTHENTICATED: "You must be authenticated to perform this action",
    INVALID_ARGUMENT: "The request is missing or has invalid fields",
}

# MongoDB server error codes
_SERVER_CODES = {
    11: UNAUTHENTICATED,        # UserNotFound
    13: PERMISSION_DENIED,      # Unauthorized
    18: UNAUTHENTICATED,        # AuthenticationFailed
    20: FAILED_PRECONDITION,    # IllegalOperation
    26: NOT_FOUND,              # NamespaceNotFound
    48: ALREADY_EXISTS,         # NamespaceExists
    50: ABORTED,                # MaxTimeMSExpired
    112: ABORTED,               # WriteConflict
    115: UNIMPLEMENTED,         # CommandNotSupported
    146: RESOURCE_EXHAUSTED,    # ExceededMemoryLimit
    251: ABORTED,               # NoSuchTransaction
    263: FAILED_PRECONDITION,   # OperationNotSupportedInTransaction
    292: RESOURCE_EXHAUSTED,    # QueryExceededMemoryLimitNoDiskUseAllowed
    11000: ALREADY_EXISTS,      # DuplicateKey
    11600: ABORTED,             # InterruptedAtShutdown
    11601: ABORTED,             # Interrupted
}

STATUS_CODES = {
    INVALID_ARGUMENT: 400,
    UNAUTHENTICATED: 401,
    PERMISSION_DENIED: 403,
    NOT_FOUND: 404,
    ALREADY_EXISTS: 409,
    FAILED_PRECONDITION: 409,
    ABORTED: 409,
    RESOURCE_EXHAUSTED: 429,
    UNIMPLEMENTED: 501,
    UNAVAILABLE: 503,
}


class ServiceError(Exception):
    """A normalized error with a stable `code`"""

    code = UNKNOWN

    def __init__(self, message: str, code: Optional[str] = None, original: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.original = original

    @property
    def status_code(self) -> int:
        return STATUS_CODES.get(self.code, 500)

    def __repr__(self):
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(ServiceError):
    code = NOT_FOUND


class PermissionDeniedError(ServiceError):
    code = PERMISSION_DENIED


class ValidationError(ServiceError):
    code = INVALID_ARGUMENT


class UnavailableError(ServiceError):
    code = UNAVAILABLE


def _code_for(error: BaseException) -> Optional[str]:
    if isinstance(error, SchemaError):
        return INVALID_ARGUMENT
    if isinstance(error, DuplicateKeyError):
        return ALREADY_EXISTS
    if isinstance(error, (ServerSelectionTimeoutError, ConnectionFailure, AutoReconnect)):
        return UNAVAILABLE
    if isinstance(error, ExecutionTimeout):
        return ABORTED
    if isinstance(error, DocumentTooLarge):
        return OUT_OF_RANGE
    if isinstance(error, (InvalidBSON, BSONError)):
        return DATA_LOSS
    if isinstance(error, OperationFailure):
        return _SERVER_CODES.get(error.code, INTERNAL)
    return None


def normalize_error(error: BaseException) -> ServiceError:
    if isinstance(error, ServiceError):
        return error

    code = _code_for(error)
    if code is not None:
        return ServiceError(ERROR_MESSAGES.get(code, str(error)), code, error)

    return ServiceError(str(error) or "An unknown error occurred", UNKNOWN, error)


def action(func):
    """Wrap a store-backed function so it only ever raises ServiceError"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            error = normalize_error(e)
            logger.error("Action error in %s: [%s] %s", func.__name__, error.code, error.message)
            if error is e:
                raise
            raise error from e

    return wrapper
