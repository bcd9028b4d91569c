"""Standardized API response helpers.

Paginated endpoints return a consistent envelope:
    {"items": [...], "total": <int>, "skip": <int>, "limit": <int>, "has_more": <bool>}

Page-numbered endpoints (notifications) return:
    {"items": [...], "meta": {"page": <int>, "limit": <int>, "total": <int>, "total_pages": <int>}}

Single-item endpoints return the object directly (no wrapper).
"""

import math
from typing import Any, List


def paginated_response(
    items: List[Any],
    total: int,
    skip: int = 0,
    limit: int = 50,
) -> dict:
    """Wrap a paginated list in the standard envelope."""
    return {
        "items": items,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": (skip + len(items)) < total,
    }


def paged_response(
    items: List[Any],
    total: int,
    page: int,
    limit: int,
) -> dict:
    """Wrap one page of results with page-number metadata."""
    return {
        "items": items,
        "meta": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
        },
    }
