"""Command line entry point: ``spending-tracker <command> ...``.

Every command prints JSON to stdout. Errors from the tracker are printed
to stderr and turn into a non-zero exit status.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import config, queries
from .config_cache import BudgetConfigCache
from .db import TransactionStore
from .errors import SpendingTrackerError

logger = logging.getLogger(__name__)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _store(args: argparse.Namespace) -> TransactionStore:
    return TransactionStore(args.db)


def cmd_import(args: argparse.Namespace) -> int:
    result = queries.import_csv(
        _store(args),
        Path(args.file),
        skip_duplicates=args.skip_duplicates,
        validate_only=args.validate_only,
    )
    _emit(result)
    return 0 if result['session']['status'] == 'completed' else 1


def cmd_list(args: argparse.Namespace) -> int:
    params = {
        'startDate': args.start,
        'endDate': args.end,
        'category': args.category,
        'page': args.page,
        'limit': args.limit,
        'sortBy': args.sort_by,
        'sortOrder': args.sort_order,
    }
    _emit(queries.list_transactions(_store(args), params))
    return 0


def cmd_kpis(args: argparse.Namespace) -> int:
    params = {'startDate': args.start, 'endDate': args.end, 'category': args.category}
    _emit(queries.kpis(_store(args), params))
    return 0


def cmd_categories(args: argparse.Namespace) -> int:
    _emit(queries.category_summary(_store(args), {'startDate': args.start, 'endDate': args.end}))
    return 0


def cmd_calendar(args: argparse.Namespace) -> int:
    _emit(queries.calendar_summary(_store(args), args.start, args.end))
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    _emit(queries.dashboard_stats(_store(args), {'days': args.days}))
    return 0


def cmd_patterns(args: argparse.Namespace) -> int:
    _emit(queries.spending_patterns(_store(args), {'months': args.months}))
    return 0


def cmd_budget(args: argparse.Namespace) -> int:
    cache = BudgetConfigCache(args.config)
    _emit(queries.budget_metrics(_store(args), cache, args.month))
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    store = _store(args)
    _emit({
        'sessions': [s.to_dict() for s in store.recent_sessions(args.limit)],
        'stats': store.import_stats(),
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='spending-tracker',
        description='Import bank CSV exports and report on spending.',
    )
    parser.add_argument('--db', type=Path, default=None, help=f'SQLite file (default: {config.DB_PATH})')
    parser.add_argument('--log-level', default=None, help="Logging level (default: SPENDING_TRACKER_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('import', help='Import a CSV file')
    p.add_argument('file', help='CSV with date, amount and description columns')
    p.add_argument('--validate-only', action='store_true', help='Validate rows without writing them')
    p.add_argument('--skip-duplicates', action='store_true', help='Count duplicates without listing them')
    p.set_defaults(func=cmd_import)

    p = sub.add_parser('list', help='List transactions one page at a time')
    p.add_argument('--start')
    p.add_argument('--end')
    p.add_argument('--category')
    p.add_argument('--page', type=int, default=1)
    p.add_argument('--limit', type=int, default=config.DEFAULT_PAGE_SIZE)
    p.add_argument('--sort-by', default='date', choices=['date', 'amount', 'category'])
    p.add_argument('--sort-order', default='desc', choices=['asc', 'desc'])
    p.set_defaults(func=cmd_list)

    p = sub.add_parser('kpis', help='Spending, income and net totals')
    p.add_argument('--start')
    p.add_argument('--end')
    p.add_argument('--category')
    p.set_defaults(func=cmd_kpis)

    p = sub.add_parser('categories', help='Per-category totals and shares')
    p.add_argument('--start')
    p.add_argument('--end')
    p.set_defaults(func=cmd_categories)

    p = sub.add_parser('calendar', help='Daily spending and heatmap thresholds')
    p.add_argument('start', help='YYYY-MM-DD')
    p.add_argument('end', help='YYYY-MM-DD')
    p.set_defaults(func=cmd_calendar)

    p = sub.add_parser('stats', help='Recent period against the one before it')
    p.add_argument('--days', type=int, default=30)
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser('patterns', help='Monthly averages and category trends')
    p.add_argument('--months', type=int, default=6)
    p.set_defaults(func=cmd_patterns)

    p = sub.add_parser('budget', help='Budget vs actual for a month')
    p.add_argument('month', help='YYYY-MM')
    p.add_argument('--config', type=Path, default=None, help=f'Budget JSON (default: {config.BUDGET_CONFIG_PATH})')
    p.set_defaults(func=cmd_budget)

    p = sub.add_parser('sessions', help='Recent import sessions')
    p.add_argument('--limit', type=int, default=10)
    p.set_defaults(func=cmd_sessions)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level, stream=sys.stderr)
    try:
        return args.func(args)
    except SpendingTrackerError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
