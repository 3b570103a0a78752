import re
from datetime import datetime, timezone
from typing import Optional

import bleach

REMARK_MAX_LENGTH = 255


def utcnow() -> datetime:
    # naive UTC, the form SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def sanitize_remark(value: Optional[str]) -> str:
    """Clean a free-text remark before it is written to the ledger.

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Collapses runs of whitespace
    - Truncates to the column width
    """
    if value is None:
        return ""
    # remove NULL bytes
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    val = re.sub(r"\s+", " ", val)
    return val.strip()[:REMARK_MAX_LENGTH]
