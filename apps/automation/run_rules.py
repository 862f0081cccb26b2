#!/usr/bin/env python3
"""
Automation Rules Runner

CLI entry point for scoring sessions, recomputing deals and listing deals.

Usage:
    python -m apps.automation.run_rules score --session session.json
    python -m apps.automation.run_rules recompute --deal deal_123 --session session.json
    python -m apps.automation.run_rules recompute --deal deal_123 --session session.json --dry-run
    python -m apps.automation.run_rules deals --status active,qualified --search lake --page 2
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from apps.automation.rules_engine import RuleEngine
from src.adapters.base_adapter import (
    DealFilters,
    DealStage,
    DealStatus,
    SessionData,
    Temperature,
)
from src.core.database import CRMDatabase
from src.core.deal_service import DealService
from src.core.exceptions import DealNotFoundError, InputError
from src.core.scoring_engine import ScoringEngine
from src.core.temperature import classify
from src.utils.config import get_db_path, load_config
from src.utils.logging import setup_logging

logger = logging.getLogger('rules_engine')


def load_session(path: str) -> SessionData:
    """
    Read a JSON session payload from disk.

    Raises:
        InputError: file missing, unreadable, or not a JSON object
    """
    try:
        with open(path, 'r') as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        raise InputError(f"Cannot read session file {path}: {e}")

    if not isinstance(payload, dict):
        raise InputError(f"Session file {path} must contain a JSON object")
    return SessionData.from_dict(payload)


def parse_enum_list(raw: Optional[str], enum_cls) -> List[Any]:
    """Parse 'a,b,c' into enum members. Raises InputError on unknown values."""
    if not raw:
        return []
    values = []
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        try:
            values.append(enum_cls(item))
        except ValueError:
            allowed = ', '.join(member.value for member in enum_cls)
            raise InputError(f"Unknown {enum_cls.__name__} '{item}'. Available: {allowed}")
    return values


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_score(args) -> int:
    session = load_session(args.session)
    engine = ScoringEngine()
    metrics = engine.score(session)
    temperature = classify(metrics.total_score)

    logger.info(f"Session {session.session_id or '-'} scored {metrics.total_score} ({temperature.value})")
    _print_json({
        'session_id': session.session_id,
        'metrics': metrics.to_dict(),
        'temperature': temperature.value,
        'insights': engine.insights(metrics),
        'recommendations': engine.recommendations(metrics),
    })
    return 0


def cmd_recompute(args, service: DealService) -> int:
    session = load_session(args.session)
    result = service.recompute(args.deal, session, persist=not args.dry_run)

    mode = 'DRY RUN' if args.dry_run else 'LIVE'
    logger.info(
        f"[{mode}] Deal {args.deal}: score {result.previous_score} → {result.metrics.total_score}, "
        f"stage {result.previous_stage.value} → {result.deal.stage.value}, "
        f"{len(result.tasks_generated)} task(s)"
    )
    for task in result.tasks_generated:
        logger.info(f"    → {task.priority.value}: {task.title} (due {task.due_date:%Y-%m-%d %H:%M})")

    output = result.to_dict()
    output['dry_run'] = args.dry_run
    _print_json(output)
    return 0


def cmd_deals(args, service: DealService) -> int:
    filters = DealFilters(
        status=parse_enum_list(args.status, DealStatus),
        stage=parse_enum_list(args.stage, DealStage),
        temperature=parse_enum_list(args.temperature, Temperature),
        search=args.search,
        agent_id=args.agent,
    )
    listing = service.get_deals(filters, page=args.page, limit=args.limit)
    _print_json({
        'data': [deal.to_json_dict() for deal in listing['data']],
        'pagination': listing['pagination'],
    })
    return 0


COMMANDS = {
    'recompute': cmd_recompute,
    'deals': cmd_deals,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='SwipeLink CRM engagement and automation tools')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to config.yaml (default: config/config.yaml)')
    parser.add_argument('--db', type=str, default=None,
                        help='SQLite database path (overrides config)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    score = subparsers.add_parser('score', help='Score a session without touching any deal')
    score.add_argument('--session', required=True, help='Session JSON file')

    recompute = subparsers.add_parser('recompute', help='Recompute a deal from a new session')
    recompute.add_argument('--deal', required=True, help='Deal id')
    recompute.add_argument('--session', required=True, help='Session JSON file')
    recompute.add_argument('--dry-run', action='store_true',
                           help='Preview the changes without writing them')

    deals = subparsers.add_parser('deals', help='List deals as JSON')
    deals.add_argument('--status', type=str, default=None, help='Comma-separated statuses')
    deals.add_argument('--stage', type=str, default=None, help='Comma-separated stages')
    deals.add_argument('--temperature', type=str, default=None, help='Comma-separated temperatures')
    deals.add_argument('--search', type=str, default=None, help='Case-insensitive name search')
    deals.add_argument('--agent', type=str, default=None, help='Agent id')
    deals.add_argument('--page', type=int, default=1)
    deals.add_argument('--limit', type=int, default=20)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(config_path=args.config)
    log_config = config.get('logging', {})
    log_level = 'DEBUG' if args.verbose else log_config.get('level', 'INFO')
    # JSON output owns stdout
    setup_logging(level=log_level, log_file=log_config.get('file'), name=None, stream=sys.stderr)

    logger.info(f"=== SwipeLink {args.command} — {datetime.now().strftime('%Y-%m-%d %H:%M')} ===")

    try:
        if args.command == 'score':
            return cmd_score(args)

        db_path = args.db or get_db_path(config)
        db = CRMDatabase(db_path)
        service = DealService(db, rule_engine=RuleEngine(db=db))
        return COMMANDS[args.command](args, service)
    except DealNotFoundError as e:
        logger.error(str(e))
        return 1
    except InputError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
