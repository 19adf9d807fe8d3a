"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Schedules trading cycles per account.

- One cycle at a time per account (asyncio.Lock per account)
- A trigger while a cycle runs is rejected, never queued
- run_all() runs every auto-trade account concurrently
- serve() runs each auto-trade account on its own interval
- Handles signals (SIGINT, SIGTERM) for graceful shutdown

============================================================
ARCHITECTURAL POSITION
============================================================
- The scheduler has NO trading logic
- It does NOT modify decisions
- It ONLY decides when TradingCycle runs

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set

from core.clock import ClockProtocol, get_clock
from decision_engine import DecisionAction
from storage.database import Database
from storage.repository import TradingRepository

from .cycle import TradingCycle
from .models import (
    ConfigurationError,
    CycleAlreadyRunningError,
    CycleResult,
    OrchestratorConfig,
    RunSummary,
)


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
) -> logging.Logger:
    """
    Set up logging on a single stdout handler.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            }, ensure_ascii=False)
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


logger = logging.getLogger(__name__)


# ============================================================
# SCHEDULER
# ============================================================

class AccountScheduler:
    """
    Per-account cycle scheduler.

    Usage:
        scheduler = AccountScheduler(cycle, database)
        summary = await scheduler.run_all()
    """

    def __init__(
        self,
        cycle: TradingCycle,
        database: Database,
        config: Optional[OrchestratorConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or OrchestratorConfig()
        errors = self._config.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {', '.join(errors)}")

        self._cycle = cycle
        self._database = database
        self._clock = clock or get_clock()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._next_run: Dict[str, datetime] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._running = False

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def is_cycle_running(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    # --------------------------------------------------------
    # Triggers
    # --------------------------------------------------------

    async def trigger(self, account_id: str) -> CycleResult:
        """
        Run one cycle for the account now.

        Raises:
            CycleAlreadyRunningError: A cycle for the account is in progress
        """
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        if lock.locked():
            logger.warning(f"Rejected trigger for {account_id}: cycle already running")
            raise CycleAlreadyRunningError(account_id)
        async with lock:
            return await self._cycle.run(account_id)

    async def trigger_trade(
        self,
        account_id: str,
        action: DecisionAction,
        symbol: str,
        amount: Decimal,
        leverage: Optional[int] = None,
    ) -> CycleResult:
        """Manual trade under the same per-account lock."""
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        if lock.locked():
            logger.warning(f"Rejected manual trade for {account_id}: cycle already running")
            raise CycleAlreadyRunningError(account_id)
        async with lock:
            return await self._cycle.trade(account_id, action, symbol, amount, leverage)

    async def run_all(self) -> RunSummary:
        """One cycle for every auto-trade account, concurrently."""
        account_ids = await self._auto_trade_account_ids()
        summary = RunSummary()
        if not account_ids:
            logger.info("No auto-trade accounts")
            return summary

        logger.info(f"Running {len(account_ids)} account cycle(s)")
        results = await asyncio.gather(
            *(self.trigger(account_id) for account_id in account_ids),
            return_exceptions=True,
        )
        for account_id, result in zip(account_ids, results):
            if isinstance(result, BaseException):
                summary.errors += 1
                logger.error(f"Cycle for {account_id} raised {type(result).__name__}: {result}")
            else:
                summary.add(result)

        logger.info(f"Run complete: {summary.to_dict()}")
        return summary

    async def _auto_trade_account_ids(self) -> List[str]:
        async with self._database.session() as session:
            accounts = await TradingRepository(session).list_auto_trade_accounts()
            return [a.id for a in accounts]

    async def _due_accounts(self) -> List[str]:
        """Auto-trade accounts whose interval has elapsed."""
        now = self._clock.now()
        due = []
        async with self._database.session() as session:
            accounts = await TradingRepository(session).list_auto_trade_accounts()
        active = set()
        for account in accounts:
            active.add(account.id)
            if now < self._next_run.get(account.id, now):
                continue
            minutes = account.trade_interval_minutes or self._config.default_interval_minutes
            self._next_run[account.id] = now + timedelta(minutes=minutes)
            due.append(account.id)
        for account_id in list(self._next_run):
            if account_id not in active:
                del self._next_run[account_id]
        return due

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def tick(self) -> List[asyncio.Task]:
        """Start a cycle task for every due account that is idle."""
        started = []
        for account_id in await self._due_accounts():
            if self.is_cycle_running(account_id):
                logger.info(f"Skipping {account_id}: previous cycle still running")
                continue
            task = asyncio.create_task(self._run_guarded(account_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        return started

    async def _run_guarded(self, account_id: str) -> Optional[CycleResult]:
        try:
            return await self.trigger(account_id)
        except CycleAlreadyRunningError:
            return None
        except Exception as e:
            logger.error(f"Cycle error for {account_id}: {e}", exc_info=True)
            return None

    async def serve(self) -> None:
        """
        Run until stop() or a shutdown signal.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._stop_event.clear()
        self._install_signal_handlers()
        logger.info(f"=== SCHEDULER START | tick={self._config.tick_interval_seconds}s ===")

        try:
            while not self._stop_event.is_set():
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Scheduler tick error: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._config.tick_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._drain()
            self._restore_signal_handlers()
            self._running = False
            logger.info("=== SCHEDULER STOPPED ===")

    def stop(self) -> None:
        self._stop_event.set()

    async def _drain(self) -> None:
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} running cycle(s)")
        done, pending = await asyncio.wait(
            list(self._tasks), timeout=self._config.shutdown_timeout_seconds
        )
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} cycle(s) still running at shutdown")

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name}")

    def _restore_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, shutting down")
        self.stop()
