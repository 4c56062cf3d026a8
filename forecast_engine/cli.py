"""
Command-line access to the forecast engine.

Usage:
    forecast-engine forecast --org-id 1 --user-id 7 --role manager
    forecast-engine snapshot --org-id 1 --user-id 1 --role exec --see-all --period-id 12
    forecast-engine rollups --org-id 1 --user-id 1 --role admin

Reads DATABASE_URL (and the other settings) from the environment or .env.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from forecast_engine.core.config import MissingDatabaseURLError, get_settings
from forecast_engine.core.database import get_db, get_session_factory
from forecast_engine.engine.results import to_plain
from forecast_engine.engine.scope import Caller, Role
from forecast_engine.services.forecast_service import ForecastService

logger = logging.getLogger(__name__)

COMMANDS = ("forecast", "momentum", "channel", "kpis", "snapshot", "rollups")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forecast-engine",
        description="Compute CRM vs health-adjusted forecasts for a quota period",
    )
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--org-id", type=int, required=True)
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument(
        "--role",
        type=str,
        default="rep",
        help="admin, exec, manager or rep (unknown roles are treated as rep)",
    )
    parser.add_argument(
        "--see-all",
        action="store_true",
        help="Company-wide visibility for executives",
    )
    parser.add_argument(
        "--period-id",
        type=int,
        default=None,
        help="Quota period id (defaults to the period containing today)",
    )
    parser.add_argument("--indent", type=int, default=2)
    return parser


def run(service: ForecastService, command: str, caller: Caller, period_id: Optional[int]):
    if command == "forecast":
        return service.get_forecast_summary(caller, period_id)
    if command == "momentum":
        return service.get_pipeline_momentum(caller, period_id)
    if command == "channel":
        return service.get_channel_scorecard(caller, period_id)
    if command == "kpis":
        return service.get_quarter_kpis(caller, period_id)
    if command == "snapshot":
        return service.get_executive_snapshot(caller, period_id)
    return asyncio.run(service.get_rep_rollups(caller, period_id))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    caller = Caller(
        user_id=args.user_id,
        org_id=args.org_id,
        role=Role.parse(args.role),
        see_all=args.see_all,
    )

    try:
        for db in get_db():
            service = ForecastService(db, settings=settings, session_factory=get_session_factory())
            result = run(service, args.command, caller, args.period_id)
    except MissingDatabaseURLError as e:
        logger.error(str(e))
        return 2

    print(json.dumps(to_plain(result), indent=args.indent or None))
    return 0


if __name__ == "__main__":
    sys.exit(main())
