"""
Typed error taxonomy for the retention analytics engine.

Every failure surfaced by the service layer is one of four kinds:

- AggregationFailure: a page fetch failed mid-aggregation; no partial result
  is ever returned to the caller.
- InvariantViolation: a mutation would break a state rule (second active
  playbook, second pending churn event, resolving a terminal action).
- NotFound: the referenced client, template, instance or action does not exist.
- InconsistentState: the data contradicts an accounting or structural rule
  (MRR identity does not reconcile, malformed playbook template).

The API layer maps these to HTTP status codes in main.py. Nothing in the
engine retries automatically; errors propagate to the caller.
"""

from typing import Optional


class RetentionAnalyticsError(Exception):
    """Base class for every error raised by the analytics engine."""


class AggregationFailure(RetentionAnalyticsError):
    """
    Raised when a page fetch fails while aggregating a full result set.

    Attributes:
        description: Human-readable name of the aggregated collection.
        offset: Row offset of the page that failed.
    """

    def __init__(self, description: str, offset: int, reason: str) -> None:
        self.description = description
        self.offset = offset
        super().__init__(
            f"Failed to aggregate {description} at offset {offset}: {reason}"
        )


class InvariantViolation(RetentionAnalyticsError):
    """Raised when a mutation would break a state invariant."""


class NotFound(RetentionAnalyticsError):
    """
    Raised when a referenced entity does not exist.

    Attributes:
        entity: Entity kind, e.g. 'client' or 'playbook template'.
        entity_id: Identifier that was looked up.
    """

    def __init__(self, entity: str, entity_id: Optional[str]) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class InconsistentState(RetentionAnalyticsError):
    """Raised when stored data contradicts an accounting or structural rule."""
