"""Shared utilities for the net sales pipeline.

Date parsing, duration formatting and atomic file replacement used by the
stages that persist derived files.

Examples:
    >>> parse_date("2021-08-31")
    datetime.date(2021, 8, 31)

"""

from __future__ import annotations

import os
import tempfile
from datetime import date, datetime
from pathlib import Path

import pandas as pd


def parse_date(s: str | date) -> date:
    """Parse a date string in YYYY-MM-DD format.

    Args:
        s: Date string in ISO format (YYYY-MM-DD), or a date (returned as is).

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date string is not in YYYY-MM-DD format.

    """
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    return datetime.strptime(s, "%Y-%m-%d").date()


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as a human-readable string.

    Examples:
        >>> format_duration(90.5)
        '1m 30.5s'
        >>> format_duration(45.2)
        '45.2s'

    """
    mins, secs = divmod(seconds, 60.0)
    if mins >= 1:
        return f"{int(mins)}m {secs:04.1f}s"
    return f"{secs:.1f}s"


def _replace_via_temp(path: Path, write) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    try:
        write(tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def write_text_atomic(path: Path, text: str) -> None:
    """Write text to ``path`` so readers see either the old or the new file."""
    _replace_via_temp(path, lambda tmp: Path(tmp).write_text(text, encoding="utf-8"))


def write_csv_atomic(df: pd.DataFrame, path: Path) -> None:
    """Write a DataFrame as CSV, swapping the finished file into place."""
    _replace_via_temp(path, lambda tmp: df.to_csv(tmp, index=False, encoding="utf-8"))
