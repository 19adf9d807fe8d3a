"""
Orchestrator Package - Cycle Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs the per-account trading pipeline and decides when it runs.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO trading logic
2. It does NOT modify trading decisions
3. It does NOT bypass the risk gate
4. One cycle at a time per account
5. Default behavior on uncertainty is NO TRADE

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                     Orchestrator                    |
    |-----------------------------------------------------|
    |  TradingCycle     |  gather -> decide -> gate ->    |
    |                   |  execute -> reconcile           |
    |  AccountScheduler |  per-account locks and timers   |
    |  CLI              |  run / run-all / serve / ...    |
    +-----------------------------------------------------+

============================================================
USAGE
============================================================
    python -m orchestrator.cli run --account-id ACCOUNT
    python -m orchestrator.cli serve

============================================================
"""

from .models import (
    ConfigurationError,
    CycleAlreadyRunningError,
    CycleResult,
    CycleStatus,
    OrchestratorConfig,
    OrchestratorError,
    RunSummary,
)
from .cycle import TradingCycle
from .core import AccountScheduler, setup_logging


__all__ = [
    "ConfigurationError",
    "CycleAlreadyRunningError",
    "CycleResult",
    "CycleStatus",
    "OrchestratorConfig",
    "OrchestratorError",
    "RunSummary",
    "TradingCycle",
    "AccountScheduler",
    "setup_logging",
]
