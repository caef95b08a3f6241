"""Join helpers enforcing the 1:1 reference policy.

Prices and pre-invoice rates are structurally mandatory: each sales record must
match exactly one row. Records matching no row are dropped and reported as
missing; records matching several rows hit a DataIntegrityError and are
reported (or the error is raised in strict mode). Nothing is dropped without
an entry in the exclusion report.
"""

from __future__ import annotations

import logging
import warnings

import pandas as pd

from netsales_core.exceptions import DataIntegrityError, MissingReferenceWarning
from netsales_core.models import ExclusionReport

logger = logging.getLogger(__name__)


def _describe(key: list[str], values) -> str:
    return ", ".join(f"{k}={v}" for k, v in zip(key, values))


def drop_ambiguous(
    records: pd.DataFrame,
    table: pd.DataFrame,
    key: list[str],
    *,
    what: str,
    stage: str,
    reason: str,
    report: ExclusionReport,
    strict: bool = False,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Remove records whose key matches more than one row of ``table``.

    Args:
        records: Rows to be joined; must carry ``record_id`` and ``key``.
        table: Reference rows expected to be unique per ``key``.
        key: Join columns.
        what: Name of the reference, used in messages ("gross price").
        stage: Stage name recorded in the report.
        reason: Exclusion reason recorded in the report.
        report: Report receiving one entry per affected record.
        strict: Raise instead of reporting.

    Returns:
        ``(records, table)`` with the affected records and duplicated rows removed.

    Raises:
        DataIntegrityError: If ``strict`` and any record is affected.

    """
    dup_mask = table.duplicated(key, keep=False)
    if not dup_mask.any():
        return records, table

    dup_counts = table[dup_mask].groupby(key).size().rename("_n_matches").reset_index()
    hit = records.merge(dup_counts, on=key, how="inner")
    if len(hit):
        if strict:
            first = hit.iloc[0]
            raise DataIntegrityError(
                f"{first['_n_matches']} {what} rows for {_describe(key, first[key])}"
            )
        for row in hit[["record_id", "_n_matches"] + key].itertuples(index=False):
            report.add(row[0], stage, reason, f"{row[1]} {what} rows for {_describe(key, row[2:])}")
        logger.error(
            "Skipped %d record(s): duplicate %s for %d key(s)",
            len(hit),
            what,
            len(dup_counts),
        )
    return records[~records["record_id"].isin(hit["record_id"])], table[~dup_mask]


def join_exactly_one(
    records: pd.DataFrame,
    table: pd.DataFrame,
    key: list[str],
    *,
    what: str,
    stage: str,
    missing_reason: str,
    duplicate_reason: str,
    report: ExclusionReport,
    strict: bool = False,
) -> pd.DataFrame:
    """Inner-join ``records`` to ``table`` on ``key``, reporting every exclusion."""
    records, table = drop_ambiguous(
        records,
        table,
        key,
        what=what,
        stage=stage,
        reason=duplicate_reason,
        report=report,
        strict=strict,
    )
    merged = records.merge(table, on=key, how="left", indicator=True)
    missing = merged["_merge"] == "left_only"
    if missing.any():
        for row in merged.loc[missing, ["record_id"] + key].itertuples(index=False):
            report.add(row[0], stage, missing_reason, f"no {what} for {_describe(key, row[1:])}")
        message = f"Excluded {int(missing.sum())} record(s) with no {what}"
        logger.warning(message)
        warnings.warn(message, MissingReferenceWarning, stacklevel=2)
    return merged[~missing].drop(columns="_merge").reset_index(drop=True)
