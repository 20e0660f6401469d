"""
Formatting Utilities

Functions for converting timestamps to epoch milliseconds and formatting
durations and ratios for display.
"""

import logging
import numbers
import pandas as pd
import pytz
from datetime import datetime
from typing import Dict, Union
from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)

MILLISECONDS_IN_SECOND = 1000
MILLISECONDS_IN_MINUTE = 60 * MILLISECONDS_IN_SECOND
MILLISECONDS_IN_HOUR = 60 * MILLISECONDS_IN_MINUTE

TimestampLike = Union[int, float, datetime, pd.Timestamp, str]


def to_millis(value: TimestampLike) -> int:
    """
    Convert a timestamp-like value to integer epoch milliseconds.

    Args:
        value: Epoch milliseconds (int/float), datetime, pandas Timestamp or ISO 8601 string.
               Naive datetimes are assumed to be UTC.

    Returns:
        int: Epoch milliseconds

    Raises:
        TypeError: If the value type is not supported
        ValueError: If a string cannot be parsed
    """
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool):
        raise TypeError("Expected a timestamp but got: bool")

    if isinstance(value, numbers.Real):
        return int(value)

    if value is pd.NaT:
        raise ValueError("Cannot convert NaT to a timestamp")

    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()

    if isinstance(value, str):
        try:
            value = dateutil_parser.isoparse(value)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp string: {value!r}") from e

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = pytz.UTC.localize(value)
        return int(round(value.timestamp() * MILLISECONDS_IN_SECOND))

    raise TypeError(f"Expected a timestamp but got: {type(value).__name__}")


def format_timestamp(ms: int) -> str:
    """Render epoch milliseconds as an ISO 8601 UTC string (YYYY-MM-DDTHH:MM:SS.mmmZ)."""
    dt_obj = datetime.fromtimestamp(ms / MILLISECONDS_IN_SECOND, tz=pytz.UTC)
    return dt_obj.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt_obj.microsecond // 1000:03d}Z"


def to_local_datetime(ms: int, timezone: str = "UTC") -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime in the given zone."""
    tz = pytz.timezone(timezone)
    return datetime.fromtimestamp(ms / MILLISECONDS_IN_SECOND, tz=pytz.UTC).astimezone(tz)


def format_duration(milliseconds: int) -> Dict[str, int]:
    """
    Break a duration into whole hours and minutes.

    Args:
        milliseconds: Duration in milliseconds

    Returns:
        Dictionary with 'hours' and 'minutes'
    """
    milliseconds = max(int(milliseconds), 0)
    hours = milliseconds // MILLISECONDS_IN_HOUR
    minutes = (milliseconds % MILLISECONDS_IN_HOUR) // MILLISECONDS_IN_MINUTE
    return {"hours": hours, "minutes": minutes}


def format_duration_with_seconds(milliseconds: int) -> Dict[str, int]:
    """
    Break a duration into hours, minutes and seconds, truncating to whole seconds.

    Args:
        milliseconds: Duration in milliseconds

    Returns:
        Dictionary with 'hours', 'minutes' and 'seconds'
    """
    total_seconds = max(int(milliseconds), 0) // MILLISECONDS_IN_SECOND
    return {
        "hours": total_seconds // 3600,
        "minutes": (total_seconds % 3600) // 60,
        "seconds": total_seconds % 60,
    }


def format_duration_label(milliseconds: int) -> str:
    """Render a duration as 'Hh Mm'."""
    parts = format_duration(milliseconds)
    return f"{parts['hours']}h {parts['minutes']}m"


def format_percentage(ratio: float) -> str:
    """Render a 0-1 ratio as a percentage string with two decimals (e.g. '87.50%')."""
    return f"{ratio * 100:.2f}%"
