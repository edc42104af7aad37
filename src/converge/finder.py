"""Lookup strategies that resolve identifiers to remote state.

Every finder has three outcomes: a value (the resource exists), the
``NOT_FOUND`` sentinel (it does not), or a raised error (the lookup itself
failed). Callers rely on the sentinel to confirm deletions and to purge
dangling local references, so a NOT_FOUND ClientError is never allowed to
escape as an error.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from converge.aws.client import AwsClient
from converge.errors import AmbiguousLookupError, ClientError, ErrorKind
from converge.models import NOT_FOUND, NotFoundType, RemoteState, StatusTag

logger = logging.getLogger(__name__)

Finder = Callable[[], RemoteState | NotFoundType]
Probe = Callable[[], tuple[Any, str]]


def find_by_get(
    client: AwsClient,
    service: str,
    operation: str,
    payload: Mapping[str, Any],
    extract: Callable[[dict[str, Any]], Any],
) -> Any:
    """Direct get-by-id lookup.

    ``extract`` pulls the resource description out of the response; an
    empty description is treated the same as a NOT_FOUND error.
    """
    try:
        response = client.invoke(service, operation, payload)
    except ClientError as err:
        if err.kind == ErrorKind.NOT_FOUND:
            logger.debug("%s.%s: resource not found (%s)", service, operation, err.code)
            return NOT_FOUND
        raise

    item = extract(response)
    if not item:
        return NOT_FOUND
    return item


def find_by_list(
    client: AwsClient,
    service: str,
    operation: str,
    payload: Mapping[str, Any] | None,
    result_key: str,
    predicate: Callable[[dict[str, Any]], bool],
) -> Any:
    """List-then-filter lookup for resources without a direct get call.

    Exactly one match is required; more than one raises AmbiguousLookupError.
    """
    try:
        items = client.paginate(service, operation, payload, result_key)
    except ClientError as err:
        if err.kind == ErrorKind.NOT_FOUND:
            return NOT_FOUND
        raise

    matches = [item for item in items if predicate(item)]
    if not matches:
        return NOT_FOUND
    if len(matches) > 1:
        raise AmbiguousLookupError(f"{service}.{operation}", len(matches))
    return matches[0]


def status_probe(finder: Finder) -> Probe:
    """Adapt a finder into a poller probe returning ``(payload, status)``."""

    def probe() -> tuple[Any, str]:
        state = finder()
        if state is NOT_FOUND:
            return None, StatusTag.NOT_FOUND
        return state, state.status

    return probe
