"""Command-line interface for the net sales pipeline.

Examples:
    $ netsales net-sales 2020-09-01 2021-08-31
    $ netsales report 2020-09-01 2021-08-31 --keys "90002002,90002008"
    $ netsales badge 2021 --market India
    $ netsales badges 2021
    $ netsales top 2021 --by customer --n 10
    $ netsales materialize-fiscal-years
    $ netsales qa 2020-09-01 2021-08-31

"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path

from netsales_core.config import DEFAULT_MARKET, DataPaths
from netsales_core.fiscal import fiscal_year_bounds, refresh_annotation
from netsales_core.markets.tiering import MarketTiering, resolve_market, write_badges
from netsales_core.qa import run_net_sales_qa
from netsales_core.sales import core as sales_core
from netsales_core.sales import marts as sales_marts
from netsales_core.sales.aggregate import GROUPINGS, MONEY_MEASURES, QUANTITY_MEASURES
from netsales_core.store import CsvFactStore
from netsales_core.utils import format_duration, write_csv_atomic

logger = logging.getLogger(__name__)


def _write_or_print(df, output: str | None) -> None:
    if output:
        write_csv_atomic(df, Path(output))
        print(f"Wrote {len(df)} row(s) to: {output}")
    else:
        print(df.to_string(index=False))


def _cmd_net_sales(args: argparse.Namespace, paths: DataPaths) -> int:
    net = sales_core.fetch(
        paths,
        args.start_date,
        args.end_date,
        args.customers,
        mode="force" if args.force else "missing",
        strict=args.strict,
        max_workers=args.workers,
    )
    exclusions = sales_core.load_exclusions(paths, args.start_date, args.end_date)
    print(f"Net sales records: {len(net)}")
    print(f"Excluded records: {len(exclusions)}")
    if len(exclusions):
        for reason, count in exclusions["reason"].value_counts().sort_index().items():
            print(f"  {reason}: {count}")
    if args.output:
        _write_or_print(net, args.output)
    return 0


def _cmd_report(args: argparse.Namespace, paths: DataPaths) -> int:
    report = sales_marts.fetch_monthly(
        paths,
        args.start_date,
        args.end_date,
        args.keys,
        group_by=args.group_by,
        measure=args.measure,
        mode="force" if args.force else "missing",
    )
    _write_or_print(report, args.output)
    return 0


def _tiering(paths: DataPaths) -> MarketTiering:
    store = CsvFactStore(paths)
    try:
        return MarketTiering(store.sales(), store.customers())
    finally:
        store.close()


def _cmd_badge(args: argparse.Namespace, paths: DataPaths) -> int:
    tiering = _tiering(paths)
    market = resolve_market(args.market)
    total = tiering.total_quantity(args.fiscal_year, market)
    badge = tiering.classify(args.fiscal_year, market)
    print(f"{market} FY{args.fiscal_year}: {total} units -> {badge.value}")
    return 0


def _cmd_badges(args: argparse.Namespace, paths: DataPaths) -> int:
    badges = write_badges(paths, _tiering(paths), args.fiscal_year)
    print(badges.to_string(index=False))
    return 0


def _cmd_top(args: argparse.Namespace, paths: DataPaths) -> int:
    start, end = fiscal_year_bounds(args.fiscal_year)
    net = sales_core.fetch(paths, start.isoformat(), end.isoformat())
    if args.share:
        result = sales_marts.net_sales_share(net, args.fiscal_year, within=args.within)
    else:
        result = sales_marts.top_n(net, args.fiscal_year, by=args.by, n=args.n)
    _write_or_print(result, args.output)
    return 0


def _cmd_materialize(args: argparse.Namespace, paths: DataPaths) -> int:
    store = CsvFactStore(paths)
    try:
        mapping = refresh_annotation(paths, store.sales())
    finally:
        store.close()
    print(f"Materialized fiscal years for {len(mapping)} record(s) to: {paths.fiscal_year_annotation}")
    return 0


def _cmd_qa(args: argparse.Namespace, paths: DataPaths) -> int:
    net = sales_core.fetch(paths, args.start_date, args.end_date)
    result = run_net_sales_qa(net)
    print("=" * 80)
    print("NET SALES QA SUMMARY")
    print("=" * 80)
    for key, value in result.summary.items():
        print(f"{key}: {value}")
    if result.invariant_violations is not None:
        print("\nInvariant violations (first 10):")
        print(result.invariant_violations.head(10).to_string(index=False))
    if result.duplicate_records is not None:
        print("\nDuplicate record ids (first 10):")
        print(result.duplicate_records.head(10).to_string(index=False))
    return 0 if result.passed else 1


def _add_range(p: argparse.ArgumentParser) -> None:
    p.add_argument("start_date", help="Start date, YYYY-MM-DD (inclusive).")
    p.add_argument("end_date", help="End date, YYYY-MM-DD (inclusive).")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="netsales",
        description="Net sales computation, monthly reports and market tiering.",
    )
    p.add_argument(
        "--data-root",
        type=str,
        default="data",
        help="Root directory for pipeline data (default: 'data'). Raw facts are read from <data-root>/a_raw",
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Less logging output.",
    )
    p.add_argument(
        "--verbose", "--debug",
        action="store_true",
        dest="verbose",
        help="Verbose/debug logging output.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    net = sub.add_parser("net-sales", help="Build fact_net_sales for a date range.")
    _add_range(net)
    net.add_argument("--customers", default=None, help="Customer codes to return, ',' or ';' separated.")
    net.add_argument("--force", action="store_true", help="Rebuild even if the fact exists.")
    net.add_argument("--strict", action="store_true", help="Abort on the first data integrity error.")
    net.add_argument("--workers", type=int, default=1, help="Fiscal years processed concurrently.")
    net.add_argument("-o", "--output", default=None, help="Also write the fact to this CSV path.")
    net.set_defaults(func=_cmd_net_sales)

    report = sub.add_parser("report", help="Monthly report for one or many customers or markets.")
    _add_range(report)
    report.add_argument("--keys", default=None, help="Customer or market codes, ',' or ';' separated.")
    report.add_argument("--group-by", choices=list(GROUPINGS), default="date+customer")
    report.add_argument(
        "--measure",
        choices=list(MONEY_MEASURES + QUANTITY_MEASURES),
        default="gross_price_total",
    )
    report.add_argument("--force", action="store_true", help="Rebuild even if the mart exists.")
    report.add_argument("-o", "--output", default=None, help="Write the report to this CSV path.")
    report.set_defaults(func=_cmd_report)

    badge = sub.add_parser("badge", help="Gold/Silver badge of one market.")
    badge.add_argument("fiscal_year", type=int)
    badge.add_argument("--market", default=None, help=f"Market name (default: {DEFAULT_MARKET}).")
    badge.set_defaults(func=_cmd_badge)

    badges = sub.add_parser("badges", help="Badges of every market, written to the gold layer.")
    badges.add_argument("fiscal_year", type=int)
    badges.set_defaults(func=_cmd_badges)

    top = sub.add_parser("top", help="Top markets, customers or products by net sales.")
    top.add_argument("fiscal_year", type=int)
    top.add_argument("--by", choices=list(sales_marts.TOP_N_DIMENSIONS), default="market")
    top.add_argument("--n", type=int, default=5)
    top.add_argument("--share", action="store_true", help="Report each customer's net sales share instead.")
    top.add_argument("--within", default=None, help="Grouping column for --share (e.g. region).")
    top.add_argument("-o", "--output", default=None)
    top.set_defaults(func=_cmd_top)

    mat = sub.add_parser("materialize-fiscal-years", help="Rebuild the fiscal year annotation file.")
    mat.set_defaults(func=_cmd_materialize)

    qa = sub.add_parser("qa", help="QA checks over fact_net_sales.")
    _add_range(qa)
    qa.set_defaults(func=_cmd_qa)
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else (logging.WARNING if args.quiet else logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    paths = DataPaths.from_root(args.data_root)
    started = time.perf_counter()
    try:
        code = args.func(args, paths)
    except Exception as e:
        logger.error("Error: %s", e, exc_info=args.verbose)
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    logger.info("%s finished in %s", args.command, format_duration(time.perf_counter() - started))
    return code


if __name__ == "__main__":
    raise SystemExit(main())
