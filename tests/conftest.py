"""
Shared test fixtures.

- In-memory SQLite database (aiosqlite) with all ledger tables
- MockClock pinned to a fixed instant
- Account factory
- Scripted language model client
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio

from core.clock import MockClock
from decision_engine import LanguageModelClient, ModelCallError
from storage.database import Database, DatabaseConfig
from storage.models import TradingAccountModel
from storage.repository import TradingRepository


FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0)


SPOT_BUY_REPLY = """交易币种：BTCUSDT
趋势：上升
关键指标：RSI 45，MACD 金叉
建议：BUY
交易金额：50
信心指数：0.82
风险等级：LOW
理由：EMA12 上穿 EMA26，趋势转强"""


FUTURES_OPEN_LONG_REPLY = """交易币种：BTCUSDT
趋势：强烈上升
关键指标：RSI 55
建议：OPEN_LONG
杠杆倍数：10
保证金：100
止损价格：48000
止盈价格：55000
信心指数：0.8
风险等级：MEDIUM
理由：多头信号明确"""


HOLD_REPLY = """交易币种：BTCUSDT
趋势：震荡
建议：HOLD
交易金额：0
信心指数：0.6
风险等级：MEDIUM
理由：方向不明"""


class ScriptedModelClient(LanguageModelClient):
    """Returns queued replies in order; records every prompt."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls: List[dict] = []

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "max_tokens": max_tokens,
        })
        if self.error is not None:
            raise self.error
        if not self.replies:
            raise ModelCallError("no scripted reply left")
        return self.replies.pop(0)


def make_account(mode: str = "SPOT", **overrides) -> TradingAccountModel:
    values = dict(
        user_id="user-1",
        mode=mode,
        is_testnet=True,
        enable_auto_trade=True,
        trade_interval_minutes=60,
        allowed_symbols=["BTCUSDT", "ETHUSDT"],
        max_trade_amount=Decimal("100"),
        max_position_size=Decimal("200"),
        max_daily_loss=Decimal("50"),
        default_leverage=10,
        max_leverage=20,
    )
    values.update(overrides)
    return TradingAccountModel(**values)


@pytest.fixture
def clock():
    return MockClock(FIXED_NOW)


@pytest_asyncio.fixture
async def database():
    db = Database(DatabaseConfig.for_testing())
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s


@pytest.fixture
def repository(session):
    return TradingRepository(session)


@pytest_asyncio.fixture
async def spot_account(repository):
    return await repository.add_account(make_account("SPOT"))


@pytest_asyncio.fixture
async def futures_account(repository):
    return await repository.add_account(make_account("FUTURES", user_id="user-2"))
