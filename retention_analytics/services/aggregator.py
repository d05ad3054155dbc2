"""
Paginated aggregation over the CRM store.

The store serves every collection in pages of at most `page_size` rows. This
module reassembles a complete result set by requesting consecutive pages from
offset 0 until a page comes back shorter than requested (or empty). It is the
only read path analytics services use, so no caller ever sees a result
silently truncated at the store's per-request row cap.

Guarantees:
- The returned list contains every row exactly once, in store order, provided
  the store orders pages by a stable key (all PostgresCrmStore page queries
  order by date/created_at then id).
- A failing page aborts the whole aggregation with AggregationFailure; no
  partial result is returned.
- A page longer than `page_size` is a broken store contract and also raises.

Usage:
    from retention_analytics.services.aggregator import fetch_all

    revenues = await fetch_all(
        store.fetch_revenue_page,
        description="revenues",
        client_ids=["cli_042"],
        start=date(2025, 1, 1),
    )
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from retention_analytics.core.config import get_settings
from retention_analytics.core.exceptions import AggregationFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Signature every store page method follows: fetch_page(offset=, limit=, **filters)
PageFetcher = Callable[..., Awaitable[Sequence[T]]]


async def fetch_all(
    fetch_page: PageFetcher,
    *,
    description: str = "rows",
    page_size: Optional[int] = None,
    **filters: Any,
) -> List[T]:
    """
    Fetch every row of a paged collection.

    Args:
        fetch_page: Store coroutine taking `offset` and `limit` keyword
            arguments plus the collection's filters.
        description: Collection name used in logs and errors.
        page_size: Rows per page; defaults to Settings.page_size.
        **filters: Forwarded unchanged to every page request.

    Returns:
        List of all rows across pages.

    Raises:
        AggregationFailure: If any page request fails or the store returns
            more rows than requested.
    """
    if page_size is None:
        page_size = get_settings().page_size
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")

    rows: List[T] = []
    offset = 0
    pages = 0

    while True:
        try:
            page = await fetch_page(offset=offset, limit=page_size, **filters)
        except AggregationFailure:
            raise
        except Exception as e:
            logger.error(f"Page fetch failed for {description} at offset {offset}: {e}")
            raise AggregationFailure(description, offset, str(e)) from e

        pages += 1
        if len(page) > page_size:
            raise AggregationFailure(
                description,
                offset,
                f"store returned {len(page)} rows for a page of {page_size}",
            )

        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    logger.debug(f"Aggregated {len(rows)} {description} in {pages} page(s)")
    return rows
