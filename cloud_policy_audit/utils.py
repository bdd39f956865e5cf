"""Shared helpers for resource discovery."""
from __future__ import annotations

import threading
from typing import Iterable, Iterator, Optional, Sequence, TypeVar

from botocore.client import BaseClient
from botocore.exceptions import ClientError, OperationNotPageableError

from .errors import DiscoveryError, OperationCancelled

T = TypeVar("T")


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    """Raise :class:`OperationCancelled` once *cancel* has been set."""

    if cancel is not None and cancel.is_set():
        raise OperationCancelled("Operation was cancelled")


def safe_paginate(
    client: BaseClient,
    method_name: str,
    result_key: str,
    *,
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> Iterator[dict]:
    """Iterate through paginated boto3 results while handling pagination gaps.

    The cancellation signal is checked before every page request.
    """

    raise_if_cancelled(cancel)
    try:
        paginator = client.get_paginator(method_name)
    except OperationNotPageableError:
        response = getattr(client, method_name)(**kwargs)
        for item in response.get(result_key, []):
            yield item
        return

    for page in paginator.paginate(**kwargs):
        for item in page.get(result_key, []):
            yield item
        raise_if_cancelled(cancel)


def batch_iterable(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    """Yield slices of *items* with at most ``size`` members."""

    for i in range(0, len(items), size):
        yield items[i : i + size]


def error_code(exc: Exception) -> str:
    """Return the AWS error code carried by a :class:`ClientError`, if any."""

    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def discovery_error_from_exception(action: str, region: str, exc: Exception) -> DiscoveryError:
    """Create a :class:`DiscoveryError` describing an exception raised by ``action``.

    The message format matches across providers so reports read consistently.
    """

    action = action.rstrip(".")
    return DiscoveryError(f"{action} in {region}: {exc}")


__all__ = [
    "batch_iterable",
    "discovery_error_from_exception",
    "error_code",
    "raise_if_cancelled",
    "safe_paginate",
]
