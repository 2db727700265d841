from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, time
from typing import Any, Optional

import pandas as pd
import phonenumbers  # type: ignore
from email_validator import EmailNotValidError, validate_email  # type: ignore

logger = logging.getLogger(__name__)

NON_DIGIT_RE = re.compile(r"\D")
NUMBER_JUNK_RE = re.compile(r"[^\d.\-]")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
RU_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4}|\d{2})(?!\d)")
TIME_RE = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")

TRUNK_PREFIXES = ("7", "8")

# Complete day/month/year layouts tried after the ISO and DD.MM.YYYY forms.
# Partial values ("10:30", "March", "2024") match none of them.
FALLBACK_DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %Y %H:%M",
    "%b %d %Y",
    "%b %d %Y %H:%M",
    "%b %d %Y %H:%M %z",
    "%B %d %Y",
    "%B %d, %Y",
)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return value != value
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def coerce_text(value: Any) -> str:
    if _is_missing(value):
        return ""
    return str(value).strip()


def normalize_phone(raw: Any) -> str:
    """
    Reduce a phone cell to the 10-digit Russian canonical form.

    Spreadsheet exports often store phones as floats, so an integral float is
    rendered without its trailing ``.0`` before the digits are extracted.
    Anything without digits yields ``""``.
    """
    if _is_missing(raw) or raw == "":
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    digits = NON_DIGIT_RE.sub("", str(raw))
    if len(digits) == 11 and digits.startswith(TRUNK_PREFIXES):
        digits = digits[1:]
    if len(digits) == 12 and digits.startswith("7"):
        digits = digits[1:]
    return digits


def normalize_email(raw: Any) -> str:
    return coerce_text(raw).lower()


def resolve_identity_key(phone: Any, email: Any) -> str:
    return normalize_phone(phone) or normalize_email(email)


def parse_number(value: Any) -> float:
    if _is_missing(value) or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    text = str(value).strip()
    if not text:
        return 0
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    cleaned = NUMBER_JUNK_RE.sub("", text)
    try:
        return float(cleaned)
    except ValueError:
        return 0


def _time_from_text(text: str) -> Optional[time]:
    match = TIME_RE.search(text)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    return time(hours, minutes, seconds)


def _naive(value: datetime) -> datetime:
    # offsets are dropped so the wall clock of the export is kept
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


def _parse_fallback(text: str) -> Optional[datetime]:
    for fmt in FALLBACK_DATE_FORMATS:
        try:
            parsed = pd.to_datetime(text, format=fmt, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            continue
        if not pd.isna(parsed):
            return _naive(parsed)
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a date cell into a naive ``datetime``.

    Only values carrying a full day, month and year are accepted; anything
    else is treated as a missing date.
    """
    if _is_missing(value) or isinstance(value, (bool, int, float)):
        return None
    if isinstance(value, datetime):
        return _naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None

    parsed_date: Optional[date] = None
    remainder = ""
    try:
        iso_match = ISO_DATE_RE.match(text)
        ru_match = RU_DATE_RE.match(text)
        if iso_match:
            year, month, day = (int(part) for part in iso_match.groups())
            parsed_date = date(year, month, day)
            remainder = text[iso_match.end():]
        elif ru_match:
            day, month, year = (int(part) for part in ru_match.groups())
            if year < 100:
                year += 2000 if year < 69 else 1900
            parsed_date = date(year, month, day)
            remainder = text[ru_match.end():]
    except ValueError:
        logger.debug("Rejected impossible calendar date: %s", text)
        return None

    if parsed_date is not None:
        clock = _time_from_text(remainder) or time()
        return datetime.combine(parsed_date, clock)

    fallback = _parse_fallback(text)
    if fallback is None:
        logger.debug("Unparseable date value: %s", text[:40])
    return fallback


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def parse_time(value: Any) -> Optional[time]:
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    return _time_from_text(str(value))


def is_valid_email_safe(value: str) -> bool:
    candidate = (value or "").strip()
    if not candidate:
        return False
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_standard_phone_safe(digits: str, region: str = "RU") -> bool:
    """Check a canonical national number against the region's numbering plan."""
    if not digits:
        return False
    try:
        parsed = phonenumbers.parse(digits, region)
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_valid_number(parsed)
