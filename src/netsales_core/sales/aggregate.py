"""Gold layer: aggregate enriched or net sales records by month and entity.

One or many entity codes are always handled as a single normalized set, so a
report for ``{"A"}`` is computed by exactly the same code as a report for
``{"A", "B"}``, and the two single-key reports add up to the batch report.

Example:
    >>> from netsales_core.sales.aggregate import aggregate
    >>> aggregate(net_df, "date+customer", "90002002,90002008", measure="net_sales")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import asdict, is_dataclass
from decimal import Decimal
from typing import Union

import pandas as pd

from netsales_core.exceptions import DataQualityError, InvalidInputError

logger = logging.getLogger(__name__)

# group_by value -> entity column (None: month only)
GROUPINGS: dict[str, str | None] = {
    "date": None,
    "date+customer": "customer_code",
    "date+market": "market",
}

MONEY_MEASURES = ("gross_price_total", "net_invoice_sales", "net_sales")
QUANTITY_MEASURES = ("sold_quantity",)

_DELIMITER_RE = re.compile(r"[,;]")

KeysParam = Union[str, Iterable[Union[str, int]], None]


def parse_keys(value: KeysParam) -> frozenset[str] | None:
    """Normalize a one-or-many key parameter into a set of codes.

    Args:
        value: None (no restriction), a string delimited by ``,`` or ``;``, or
            an iterable of codes. Integers are accepted as codes.

    Returns:
        None when ``value`` is None, otherwise the set of stripped codes with
        duplicates removed. An empty string or iterable gives an empty set.

    Raises:
        InvalidInputError: If an entry is empty or is not a string or integer.

    Examples:
        >>> sorted(parse_keys("A, B;A"))
        ['A', 'B']
        >>> parse_keys("")
        frozenset()

    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return frozenset()
        items: list = _DELIMITER_RE.split(text)
    else:
        try:
            items = list(value)
        except TypeError as e:
            raise InvalidInputError(f"Key parameter must be a string or an iterable, got {value!r}") from e

    keys: set[str] = set()
    for item in items:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise InvalidInputError(f"Invalid key {item!r} in {value!r}")
        code = str(item).strip()
        if not code:
            raise InvalidInputError(f"Empty key in {value!r}")
        keys.add(code)
    return frozenset(keys)


def _records_frame(records) -> pd.DataFrame:
    if isinstance(records, pd.DataFrame):
        return records
    rows = [asdict(r) if is_dataclass(r) else dict(r) for r in records]
    return pd.DataFrame(rows)


def _sum_money(values: pd.Series) -> Decimal:
    return sum(values, Decimal(0))


def output_columns(group_by: str, measure: str) -> list[str]:
    entity = GROUPINGS[group_by]
    return ["date"] + ([entity] if entity else []) + [measure]


def aggregate(
    records,
    group_by: str = "date",
    keys: KeysParam = None,
    *,
    measure: str = "net_sales",
    key_field: str | None = None,
) -> pd.DataFrame:
    """Sum a measure per month, optionally per customer or market.

    Args:
        records: Enriched or net sales records (DataFrame or dataclass records).
            Grouping by market needs the ``market`` label column.
        group_by: "date", "date+customer" or "date+market".
        keys: Entity codes to include (see :func:`parse_keys`). None includes
            every entity; an empty set gives an empty result.
        measure: "gross_price_total", "net_invoice_sales", "net_sales" or
            "sold_quantity".
        key_field: Column the keys filter on. Defaults to the grouping entity,
            or ``customer_code`` when grouping by date only.

    Returns:
        DataFrame with columns ``date``, the entity column (if any) and
        ``measure``, sorted by date then entity. Money sums are Decimal.

    Raises:
        InvalidInputError: On an unknown grouping, measure or malformed keys.
        DataQualityError: If a needed column is missing from ``records``.

    """
    if group_by not in GROUPINGS:
        raise InvalidInputError(f"Invalid group_by '{group_by}'. Must be one of {list(GROUPINGS)}.")
    if measure not in MONEY_MEASURES + QUANTITY_MEASURES:
        raise InvalidInputError(
            f"Invalid measure '{measure}'. Must be one of {list(MONEY_MEASURES + QUANTITY_MEASURES)}."
        )
    key_set = parse_keys(keys)
    entity = GROUPINGS[group_by]
    key_field = key_field or entity or "customer_code"
    columns = output_columns(group_by, measure)

    df = _records_frame(records)
    if key_set is not None and not key_set:
        return pd.DataFrame(columns=columns)
    if len(df) == 0:
        return pd.DataFrame(columns=columns)

    needed = set(columns) | ({key_field} if key_set is not None else set())
    missing = sorted(needed - set(df.columns))
    if missing:
        raise DataQualityError(f"Missing columns for aggregation: {missing}")

    if key_set is not None:
        df = df[df[key_field].astype(str).isin(key_set)]
        if len(df) == 0:
            return pd.DataFrame(columns=columns)

    group_cols = columns[:-1]
    df = df.assign(date=pd.to_datetime(df["date"]).dt.date)
    if entity:
        df = df.assign(**{entity: df[entity].astype(str)})
    grouped = df.groupby(group_cols, sort=True)[measure]
    if measure in MONEY_MEASURES:
        result = grouped.agg(_sum_money)
    else:
        result = grouped.sum().astype("int64")

    out = result.reset_index().sort_values(group_cols).reset_index(drop=True)
    logger.debug(
        "Aggregated %s by %s for %s key(s): %d row(s)",
        measure,
        group_by,
        "all" if key_set is None else len(key_set),
        len(out),
    )
    return out[columns]
