from __future__ import annotations

from typing import Tuple

from ..errors import ValidationError

MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int) -> Tuple[int, int]:
    """Translate 1-based ``page``/``limit`` into a (skip, limit) pair."""
    if page < 1:
        raise ValidationError("page must be 1 or greater", page=page)
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", limit=limit)
    return (page - 1) * limit, limit
