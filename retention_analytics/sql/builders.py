"""
Shared helpers for assembling parameterized asyncpg queries.

Optional filters change how many positional arguments a query takes, so the
builders append argument values to a caller-owned list and render the
matching `$n` placeholders.
"""

from typing import Any, List, Sequence, Tuple


QueryWithArgs = Tuple[str, List[Any]]


def where_clause(
    conditions: List[Tuple[str, Any]],
    args: List[Any],
    static: Sequence[str] = (),
) -> str:
    """
    Render WHERE conditions, numbering placeholders after existing args.

    Each condition is a SQL fragment containing a single `{}` slot for its
    placeholder, paired with the argument value. Static fragments carry no
    argument.

    Example:
        >>> args = []
        >>> where_clause([("status = {}", "pending")], args, static=("client_id IS NOT NULL",))
        'WHERE client_id IS NOT NULL AND status = $1'
    """
    fragments = list(static)
    for fragment, value in conditions:
        args.append(value)
        fragments.append(fragment.format(f"${len(args)}"))
    if not fragments:
        return ""
    return "WHERE " + " AND ".join(fragments)


def paging_clause(offset: int, limit: int, args: List[Any]) -> str:
    """Render LIMIT/OFFSET placeholders and append their values."""
    args.extend([limit, offset])
    return f"LIMIT ${len(args) - 1} OFFSET ${len(args)}"
