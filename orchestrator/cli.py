"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the trading engine.

- Provides argparse-based CLI
- Loads configuration from the environment (.env supported)
- Entry point for cycles, the scheduler and portfolio reads

============================================================
USAGE
============================================================
python -m orchestrator.cli run --account-id ACCOUNT
python -m orchestrator.cli run-all
python -m orchestrator.cli serve
python -m orchestrator.cli portfolio --account-id ACCOUNT
python -m orchestrator.cli trade --account-id ACCOUNT --action BUY --symbol BTCUSDT --amount 20

============================================================
EXIT CODES
============================================================
0 - success
1 - runtime error or failed cycle
2 - invalid arguments

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from decision_engine import DecisionAction, LLMConfig, OpenAICompatibleClient
from execution_engine import EnvCredentialStore, ExecutionEngineConfig, PositionSynchronizer
from market_data import MarketDataConfig
from risk_gate import RiskGateConfig
from storage.database import Database, DatabaseConfig

from .core import AccountScheduler, setup_logging
from .cycle import TradingCycle
from .models import CycleStatus, OrchestratorConfig


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ai-trader",
        description="AI-driven, risk-gated Binance trading engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run        - Run one cycle for an account
  run-all    - Run one cycle for every auto-trade account
  serve      - Run every auto-trade account on its own interval
  portfolio  - Print the portfolio valuation for an account
  trade      - Place a manual trade through the risk gate
        """,
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Log format (default: LOG_FORMAT or text)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run one cycle for an account")
    run.add_argument("--account-id", required=True)

    subparsers.add_parser("run-all", help="Run one cycle for every auto-trade account")

    serve = subparsers.add_parser("serve", help="Run the per-account timer loop")
    serve.add_argument(
        "--tick-interval",
        type=int,
        default=None,
        metavar="SECONDS",
        help="How often due accounts are checked",
    )

    portfolio = subparsers.add_parser("portfolio", help="Print the portfolio valuation")
    portfolio.add_argument("--account-id", required=True)

    trade = subparsers.add_parser("trade", help="Place a manual trade")
    trade.add_argument("--account-id", required=True)
    trade.add_argument(
        "--action",
        required=True,
        choices=[a.value for a in DecisionAction if not a.is_hold],
    )
    trade.add_argument("--symbol", required=True)
    trade.add_argument("--amount", required=True, help="USDT amount (spot) or margin (futures)")
    trade.add_argument("--leverage", type=int, default=None)

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    errors = []
    if args.command == "trade":
        try:
            if Decimal(args.amount) <= 0:
                errors.append("--amount must be positive")
        except InvalidOperation:
            errors.append(f"--amount is not a number: {args.amount}")
        if args.leverage is not None and args.leverage < 1:
            errors.append("--leverage must be at least 1")
    if args.command == "serve" and args.tick_interval is not None and args.tick_interval < 1:
        errors.append("--tick-interval must be at least 1 second")
    return errors


# ============================================================
# WIRING
# ============================================================

def build_config(args: argparse.Namespace) -> OrchestratorConfig:
    config = OrchestratorConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if getattr(args, "tick_interval", None):
        config.tick_interval_seconds = args.tick_interval
    return config


def build_cycle(database: Database) -> TradingCycle:
    llm_config = LLMConfig.from_env()
    return TradingCycle(
        database,
        EnvCredentialStore(),
        OpenAICompatibleClient(llm_config),
        engine_config=ExecutionEngineConfig.from_env(),
        risk_config=RiskGateConfig.from_env(),
        market_config=MarketDataConfig.from_env(),
        llm_config=llm_config,
    )


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: OrchestratorConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    database = Database(DatabaseConfig.from_env())
    cycle = build_cycle(database)
    scheduler = AccountScheduler(cycle, database, config)

    try:
        if args.command == "run":
            result = await scheduler.trigger(args.account_id)
            _print(result.to_dict())
            return EXIT_ERROR if result.status in (CycleStatus.FAILED, CycleStatus.MODEL_ERROR) else EXIT_OK

        if args.command == "run-all":
            summary = await scheduler.run_all()
            _print(summary.to_dict())
            return EXIT_ERROR if summary.errors else EXIT_OK

        if args.command == "serve":
            await scheduler.serve()
            return EXIT_OK

        if args.command == "portfolio":
            synchronizer = PositionSynchronizer(database)
            valuation = await cycle.portfolio(args.account_id, synchronizer)
            await synchronizer.wait_idle()
            _print(valuation.to_dict())
            return EXIT_OK

        if args.command == "trade":
            result = await scheduler.trigger_trade(
                args.account_id,
                DecisionAction(args.action),
                args.symbol.upper(),
                Decimal(args.amount),
                args.leverage,
            )
            _print(result.to_dict())
            return EXIT_ERROR if result.status is CycleStatus.FAILED else EXIT_OK

        return EXIT_USAGE

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        await database.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_USAGE

    config = build_config(args)
    setup_logging(config.log_level, config.log_format)

    return asyncio.run(async_main(args, config))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
