"""Exceptions shared by providers, the runner and helpers."""
from __future__ import annotations


class DiscoveryError(RuntimeError):
    """A provider failed to enumerate resources (network, auth, API fault)."""


class OperationCancelled(RuntimeError):
    """Work stopped because the cancellation signal was set."""


__all__ = ["DiscoveryError", "OperationCancelled"]
