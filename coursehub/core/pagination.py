import math
from typing import Any, List


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def paginate(items: List[Any], total: int, page: int, limit: int, key: str = "items") -> dict:
    """Standard paged response shape"""
    return {
        key: items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }
