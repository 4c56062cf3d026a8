"""
Defensive parsing of raw CRM fields.

Strict parsers raise MalformedAmountError / MalformedDateError; the
``coerce_*`` wrappers substitute the safe default so that a single bad
record never aborts an aggregation.
"""

import logging
import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from forecast_engine.core.errors import MalformedAmountError, MalformedDateError

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")
_WHITESPACE = re.compile(r"\s+")


def parse_amount(value: Any) -> float:
    """Parse a currency amount, handling strings with $, commas, etc.

    Absent values are 0. Unparsable, non-finite or negative values raise.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise MalformedAmountError(value)
    if isinstance(value, (int, float, Decimal)):
        try:
            n = float(value)
        except (InvalidOperation, ValueError, OverflowError):
            raise MalformedAmountError(value)
    elif isinstance(value, str):
        cleaned = re.sub(r"[$,\s]", "", value.strip())
        if not cleaned:
            return 0.0
        try:
            n = float(cleaned)
        except ValueError:
            raise MalformedAmountError(value)
    else:
        raise MalformedAmountError(value)

    if not math.isfinite(n) or n < 0:
        raise MalformedAmountError(value)
    return n


def coerce_amount(value: Any, field: str = "amount") -> float:
    """Parse an amount, falling back to 0."""
    try:
        return parse_amount(value)
    except MalformedAmountError as e:
        logger.debug(f"Coercing {field} to 0: {e.message}")
        return 0.0


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date from a date, datetime or CRM text.

    Accepted text: ``YYYY-MM-DD...`` and ``M/D/YYYY...`` (trailing time ignored).
    Blank values are None; anything else raises MalformedDateError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise MalformedDateError(value)

    text = value.strip()
    if not text:
        return None

    try:
        m = _ISO_DATE.match(text)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        m = _US_DATE.match(text)
        if m:
            return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
    except ValueError:
        # e.g. 2024-02-30
        raise MalformedDateError(value)
    raise MalformedDateError(value)


def coerce_date(value: Any, field: str = "date") -> Optional[date]:
    """Parse a date, falling back to None (excluded from date math)."""
    try:
        return parse_date(value)
    except MalformedDateError as e:
        logger.debug(f"Excluding {field} from date math: {e.message}")
        return None


def coerce_timestamp(value: Any, field: str = "create_ts") -> Optional[datetime]:
    """Parse a timestamp; dates become midnight, malformed values None."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            pass
    d = coerce_date(value, field=field)
    if d is None:
        return None
    return datetime(d.year, d.month, d.day)


def coerce_health_score(value: Any) -> Optional[float]:
    """Health scores of 0, None or garbage are 'unscored' (None)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Treating health score {value!r} as unscored")
        return None
    if not math.isfinite(n) or n <= 0:
        return None
    return n


def normalize_name_key(name: Any) -> str:
    """Owner name join key: trim, collapse whitespace, lowercase."""
    if name is None:
        return ""
    return _WHITESPACE.sub(" ", str(name).strip()).lower()


def clean_text(value: Any) -> Optional[str]:
    """Trimmed text, or None when blank."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
