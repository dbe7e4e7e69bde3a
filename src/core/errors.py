"""Error taxonomy shared by the core and adapters.

Every kind is contained where it is raised and degrades to skipping one unit
of work (a fetch, a batch, a single send).
"""

from __future__ import annotations


class AlertScopeError(Exception):
    """Base class for all alertscope errors."""


class FetchError(AlertScopeError):
    """Network failure, timeout or non-success status while fetching a feed."""


class ParseError(AlertScopeError):
    """The fetched page no longer matches the expected template."""


class PersistenceError(AlertScopeError):
    """A write to the message store or feed registry failed."""


class DeliveryError(AlertScopeError):
    """A single send to a single recipient failed."""

    def __init__(self, recipient_id: int, message: str) -> None:
        super().__init__(f"recipient {recipient_id}: {message}")
        self.recipient_id = recipient_id
