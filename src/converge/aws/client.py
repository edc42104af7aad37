"""Thin boto3 wrapper that classifies control-plane failures."""

import logging
import threading
from collections.abc import Mapping
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, HTTPClientError, ParamValidationError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import ClientError as BotoClientError

from converge.errors import ClientError, ErrorKind

logger = logging.getLogger(__name__)

THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "RequestThrottledException",
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "SlowDown",
    }
)

NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "EntityNotFoundException",
        "DoesNotExistException",
        "NotFoundException",
        "NoSuchEntity",
        "TableNotFoundException",
    }
)

CONFLICT_CODES = frozenset(
    {
        "ResourceInUseException",
        "ConcurrentModificationException",
        "ConflictException",
        "OperationAbortedException",
        "TransactionConflictException",
    }
)

INVALID_INPUT_CODES = frozenset(
    {
        "ValidationException",
        "ValidationError",
        "InvalidInputException",
        "InvalidParameterException",
        "InvalidParameterValue",
        "InvalidParameterValueException",
        "InvalidParameterCombination",
        "MissingParameter",
        "SerializationException",
    }
)

TRANSIENT_CODES = frozenset(
    {
        "InternalFailure",
        "InternalServerError",
        "InternalServerException",
        "InternalErrorException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)


def classify_error_code(code: str | None, http_status: int | None = None) -> ErrorKind:
    """Map a provider error code (and HTTP status) to an ErrorKind."""
    if code in THROTTLING_CODES:
        return ErrorKind.THROTTLED
    if code in NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in CONFLICT_CODES:
        return ErrorKind.CONFLICT
    if code in INVALID_INPUT_CODES:
        return ErrorKind.INVALID_INPUT
    if code in TRANSIENT_CODES:
        return ErrorKind.TRANSIENT
    if http_status == 429:
        return ErrorKind.THROTTLED
    if http_status is not None and http_status >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


class AwsClient:
    """Shared, thread-safe facade over boto3 service clients.

    Construct once and pass it to every orchestrator. Retries are disabled
    at the botocore level; retry policy belongs to the callers.
    """

    def __init__(
        self,
        region: str | None = None,
        session: boto3.session.Session | None = None,
        max_pool_connections: int = 10,
    ):
        self._session = session or boto3.session.Session(
            **({"region_name": region} if region else {})
        )
        self._config = Config(
            retries={"total_max_attempts": 1, "mode": "standard"},
            max_pool_connections=max_pool_connections,
        )
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def client(self, service: str):
        """Return the shared boto3 client for a service, creating it once."""
        with self._lock:
            if service not in self._clients:
                self._clients[service] = self._session.client(service, config=self._config)
            return self._clients[service]

    def invoke(
        self,
        service: str,
        operation: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call ``operation`` (boto3 method name) and return the response.

        Raises ClientError classified by provider error code.
        """
        method = getattr(self.client(service), operation)
        logger.debug("Calling %s.%s", service, operation)
        try:
            response = method(**dict(payload or {}))
        except BotoCoreError as err:
            raise _translate(err, service, operation) from err
        except BotoClientError as err:
            raise _classify(err, service, operation) from err

        response = dict(response)
        response.pop("ResponseMetadata", None)
        return response

    def paginate(
        self,
        service: str,
        operation: str,
        payload: Mapping[str, Any] | None,
        result_key: str,
    ) -> list[Any]:
        """Run a paginated list operation and concatenate ``result_key``."""
        paginator = self.client(service).get_paginator(operation)
        items: list[Any] = []
        try:
            for page in paginator.paginate(**dict(payload or {})):
                items.extend(page.get(result_key, []))
        except BotoCoreError as err:
            raise _translate(err, service, operation) from err
        except BotoClientError as err:
            raise _classify(err, service, operation) from err
        return items


def _translate(err: BotoCoreError, service: str, operation: str) -> ClientError:
    """Errors raised by botocore before or instead of a provider response."""
    if isinstance(err, ParamValidationError):
        kind = ErrorKind.INVALID_INPUT
    elif isinstance(err, (BotoConnectionError, HTTPClientError)):
        kind = ErrorKind.TRANSIENT
    else:
        kind = ErrorKind.FATAL
    return ClientError(kind, str(err), service=service, operation=operation)


def _classify(err: BotoClientError, service: str, operation: str) -> ClientError:
    error = err.response.get("Error", {})
    code = error.get("Code")
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    kind = classify_error_code(code, status)
    return ClientError(
        kind,
        error.get("Message") or str(err),
        code=code,
        service=service,
        operation=operation,
    )
