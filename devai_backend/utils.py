from __future__ import annotations

import math
import re
import unicodedata
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ValidationFailed
from .models import utcnow

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

TIMEFRAMES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
GRANULARITIES = ("hour", "day", "week", "month")


def generate_slug(text: str, max_length: int = 100) -> str:
    normalized = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "untitled"


def unique_slug(text: str, exists: Callable[[str], bool]) -> str:
    """`my-name`, then `my-name-1`, `my-name-2`... until `exists` says no."""
    base = generate_slug(text)
    slug, counter = base, 1
    while exists(slug):
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def page_params(page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Tuple[int, int, int]:
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return page, limit, (page - 1) * limit


def calculate_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value, exponent = float(size), 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    if timeframe not in TIMEFRAMES:
        raise ValidationFailed(f"Invalid timeframe '{timeframe}'. Use one of: {', '.join(TIMEFRAMES)}")
    return (now or utcnow()) - timedelta(days=TIMEFRAMES[timeframe])


def bucket_key(moment: datetime, granularity: str) -> str:
    if granularity == "hour":
        return moment.strftime("%Y-%m-%dT%H:00")
    if granularity == "day":
        return moment.strftime("%Y-%m-%d")
    if granularity == "week":
        monday = moment - timedelta(days=moment.weekday())
        return monday.strftime("%Y-%m-%d")
    if granularity == "month":
        return moment.strftime("%Y-%m")
    raise ValidationFailed(f"Invalid granularity '{granularity}'. Use one of: {', '.join(GRANULARITIES)}")


def bucket_counts(moments: List[datetime], granularity: str) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for moment in moments:
        key = bucket_key(moment, granularity)
        counts[key] = counts.get(key, 0) + 1
    return [{"period": key, "count": counts[key]} for key in sorted(counts)]
