import html
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, NamedTuple, Optional, TypeVar

import bleach
from sqlalchemy.orm import Session

from . import errors

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reads that run under a deadline are executed here so the caller can stop waiting
_read_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="deadline-read")

# entity decoding can uncover new markup ("&lt;b&gt;"), so cleaning repeats until stable
_MAX_CLEAN_PASSES = 5


def _strip_markup(value: str) -> str:
    """Remove every tag and return plain text with entities decoded."""
    val = value.replace("\x00", "")
    for _ in range(_MAX_CLEAN_PASSES):
        cleaned = html.unescape(bleach.clean(val, tags=set(), attributes={}, strip=True))
        if cleaned == val:
            break
        val = cleaned
    else:
        # still changing: drop anything that could open a tag
        val = val.replace("<", "").replace(">", "")
    return val


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string for safe display and search.

    - Strips all HTML tags using bleach.clean(..., tags=set(), strip=True)
    - Removes obvious SQL metacharacters like '--' and ';'
    - Trims whitespace
    """
    if value is None:
        return ""
    # strip tags
    val = _strip_markup(value)
    # remove common SQL comment and statement separators
    val = re.sub(r"(--|;)", "", val)
    return val.strip()


def clean_text(value: Optional[str]) -> str:
    """Strip markup from free text (names, descriptions, reviews) but keep punctuation."""
    if value is None:
        return ""
    return _strip_markup(value).strip()


# Business rule: prices stored rounded to 2 decimals, half up
def round_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def run_with_deadline(db: Session, fn: Callable[[Session], T], timeout: float, what: str = "read") -> T:
    """Return ``fn(session)`` if it finishes within ``timeout`` seconds.

    ``fn`` runs on a worker thread with a session of its own, bound to the
    same engine as ``db``; the caller's session is never touched from that
    thread. On timeout raise ``DeadlineExceeded``. The late result is
    discarded and the worker closes its session when the read ends.
    """
    bind = db.get_bind()

    def work() -> T:
        with Session(bind=bind) as session:
            return fn(session)

    future = _read_pool.submit(work)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.warning("%s exceeded its %.2fs deadline", what, timeout)
        raise errors.DeadlineExceeded(f"{what} timed out") from None


class Page(NamedTuple):
    data: list
    total: int
    page: int
    limit: int


MAX_PAGE_SIZE = 100


def check_paging(page: int, limit: int):
    if page < 1:
        raise errors.InvalidArgument("Incorrect page number")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise errors.InvalidArgument("Incorrect limit")


def order_by_clause(columns: dict, sort: str, direction: str):
    """Resolve a user-supplied sort field against a whitelist of columns.

    Unknown directions fall back to ascending; unknown fields are rejected.
    """
    column = columns.get(sort)
    if column is None:
        raise errors.InvalidArgument(f"cannot sort by {sanitize_input(sort)!r}")
    if (direction or "").lower() == "desc":
        return column.desc()
    return column.asc()
