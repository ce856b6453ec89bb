"""Cleaning of loosely typed backend values into numbers, levels and labels."""

import logging
import re
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DANGER_LEVELS = (0, 1, 2, 3)
QUARTER_COUNT = 4

_LEADING_DIGITS = re.compile(r'^([0-9]+)')
_DIGITS = re.compile(r'[0-9]+')


def clean_optional_number(value: Any) -> Optional[float]:
    """
    Convert a backend value to a finite float, or None when it is absent
    or malformed.

    Strings such as "85" or "85%" are accepted. Booleans, NaN and
    infinities are treated as absent.

    Args:
        value: Raw value from an API payload

    Returns:
        Finite float or None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip().replace('%', '').replace(',', '.').strip()
        if not value:
            return None

    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        # lists, dicts and other containers
        return None

    try:
        number = float(value)
    except (ValueError, TypeError):
        logger.debug("Dropping malformed numeric value %r", value)
        return None

    if np.isnan(number) or np.isinf(number):
        return None
    return number


def clean_danger_level(value: Any) -> Optional[int]:
    """Coerce a danger level to 0..3, or None when absent or out of range."""
    number = clean_optional_number(value)
    if number is None or not number.is_integer():
        return None
    level = int(number)
    if level not in DANGER_LEVELS:
        logger.debug("Dropping out-of-range danger level %r", value)
        return None
    return level


def clean_score_list(value: Any) -> Optional[List[Optional[float]]]:
    """Clean a per-quarter score array; malformed entries become None."""
    if value is None:
        return None
    if isinstance(value, (str, bytes, dict)) or not isinstance(value, Iterable):
        return None
    return [clean_optional_number(item) for item in value]


def is_positive_score(value: Any) -> bool:
    """True for a real, finite, strictly positive number."""
    if isinstance(value, str):
        return False
    number = clean_optional_number(value)
    return number is not None and number > 0


def extract_parallel(label: Any) -> Optional[str]:
    """
    Extract the parallel of a grade label as its leading digit run.

    Examples: "10 A" -> "10", "7Б" -> "7", "A 10" -> None.
    """
    if not isinstance(label, str):
        return None
    match = _LEADING_DIGITS.match(label.strip())
    if not match:
        return None
    return match.group(1)


def is_numeric_label(value: Any) -> bool:
    """True for a plain ASCII digit run such as "10"; "²" or "1a" do not count."""
    return isinstance(value, str) and _DIGITS.fullmatch(value.strip()) is not None


def normalize_filter_value(value: Any) -> Optional[str]:
    """Map empty strings and the "all" sentinel to None."""
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() == 'all':
        return None
    return value
