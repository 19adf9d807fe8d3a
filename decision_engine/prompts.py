"""
Decision Engine - Prompts.

============================================================
PURPOSE
============================================================
Builds the system and user prompts for one analysis call.

Prompt building is deterministic: the same snapshots and
account context always produce the identical text. Symbols are
sorted and every number has a fixed format.

============================================================
"""

from decimal import Decimal
from typing import Iterable, List

from market_data.gatherer import MarketSnapshot

from .types import AccountContext, TradingMode


SPOT_SYSTEM_PROMPT = """你是专业的加密货币交易AI，负责分析市场并决定交易策略。

分析要求：
1. 分析所有提供的交易对，找出最佳交易机会
2. 基于技术指标（RSI、MACD、EMA、布林带）分析市场
3. 判断趋势方向和强度
4. 考虑当前持仓情况和盈亏
5. 给出明确建议：BUY/SELL/HOLD
6. 决定具体交易币种和金额

输出格式（必须严格遵守）：
交易币种：[BTCUSDT/ETHUSDT等]
趋势：[上升/下降/震荡]
关键指标：[核心数据]
建议：[BUY/SELL/HOLD]
交易金额：[数字]
信心指数：[0.0-1.0]
风险等级：[LOW/MEDIUM/HIGH]
理由：[1-2句话说明]

交易规则：
- RSI > 70 超买考虑卖出，< 30 超卖考虑买入
- EMA12 上穿 EMA26 金叉买入，下穿死叉卖出
- 价格突破布林带上轨卖出，跌破下轨买入
- 有持仓时必须结合盈亏状况决策：盈利 > 10% 强烈建议止盈，亏损 > 10% 立即止损
- 卖出决策优先级：止损 > 止盈 > 新买入
- 灰尘持仓（价值 < $5）无法在 Binance 交易，绝对不要尝试卖出
- 根据风险等级决定交易金额，且必须在用户设定的最大限额内
- 避免在震荡市频繁交易"""


FUTURES_SYSTEM_PROMPT = """你是专业的加密货币合约交易AI，负责分析市场并决定合约交易策略。

分析要求：
1. 分析市场趋势，判断多空方向
2. 基于技术指标（RSI、MACD、EMA、布林带）和资金费率分析
3. 考虑当前持仓情况、盈亏状态和持仓时间
4. 给出明确建议：OPEN_LONG（开多）/ OPEN_SHORT（开空）/ CLOSE_LONG（平多）/ CLOSE_SHORT（平空）/ HOLD（持有）
5. 建议合适的杠杆倍数和保证金
6. 设置止损和止盈价格

输出格式（必须严格遵守）：
交易币种：[BTCUSDT/ETHUSDT等]
趋势：[强烈上升/上升/震荡/下降/强烈下降]
关键指标：[核心数据]
建议：[OPEN_LONG/OPEN_SHORT/CLOSE_LONG/CLOSE_SHORT/HOLD]
杠杆倍数：[整数]
保证金：[USDT金额]
止损价格：[价格]
止盈价格：[价格]
信心指数：[0.0-1.0]
风险等级：[LOW/MEDIUM/HIGH]
理由：[1-2句话说明]

交易规则：
- 强烈上升趋势 + RSI < 70：考虑开多；强烈下降趋势 + RSI > 30：考虑开空
- MACD 金叉 + EMA12 > EMA26：多头信号；MACD 死叉 + EMA12 < EMA26：空头信号
- 盈利平仓：ROE ≥ 3% 且出现明确反转信号，或 ROE ≥ 8% 且持仓 ≥ 4 小时
- 亏损平仓：ROE ≤ -5% 且趋势明显恶化，或 ROE ≤ -10% 立即止损
- 禁止仅因小幅盈亏就平仓，手续费必须被覆盖
- 杠杆选择：信心高且风险低 10-20x，信心中等 5-10x，风险高 2-5x
- 保证金不得超过用户设定的最大值，资金费率过高时避免开仓"""


def system_prompt(mode: TradingMode) -> str:
    return FUTURES_SYSTEM_PROMPT if mode is TradingMode.FUTURES else SPOT_SYSTEM_PROMPT


def _fmt(value: float, digits: int = 2) -> str:
    return f"{value:.{digits}f}"


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def _signed(value: Decimal) -> str:
    value = Decimal(value)
    return f"+{value:.2f}" if value >= 0 else f"{value:.2f}"


def format_market_section(snapshots: Iterable[MarketSnapshot], futures: bool) -> str:
    lines: List[str] = []
    for snapshot in sorted(snapshots, key=lambda s: s.symbol):
        ind = snapshot.indicators
        lines.append(f"{snapshot.symbol}:")
        lines.append(f"- 当前价格: {_fmt(float(snapshot.price), 4)}")
        lines.append(f"- 区间涨跌: {_fmt(snapshot.change_pct)}%")
        lines.append(f"- RSI(14): {_fmt(ind.rsi)}")
        lines.append(f"- MACD: {_fmt(ind.macd.macd, 4)} / 信号线 {_fmt(ind.macd.signal, 4)} / 柱 {_fmt(ind.macd.histogram, 4)}")
        lines.append(f"- EMA12: {_fmt(ind.ema12)}")
        lines.append(f"- EMA26: {_fmt(ind.ema26)}")
        lines.append(f"- 布林带上轨: {_fmt(ind.bollinger.upper)}")
        lines.append(f"- 布林带中轨: {_fmt(ind.bollinger.middle)}")
        lines.append(f"- 布林带下轨: {_fmt(ind.bollinger.lower)}")
        if futures:
            lines.append(f"- 资金费率: {Decimal(snapshot.funding_rate) * 100:.4f}%")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_spot_holdings(context: AccountContext) -> str:
    holdings = context.holdings
    if holdings is None or (not holdings.tradeable and not holdings.dust):
        return "无持仓"

    lines: List[str] = []
    if holdings.tradeable:
        lines.append("【可交易持仓】")
        for h in holdings.tradeable:
            lines.append(
                f"{h.asset}: {h.quantity:.6f} (成本 ${_money(h.cost_basis)}, 现价值 ${_money(h.value)}, "
                f"盈亏 {_signed(h.unrealized_pnl)} / {_signed(h.unrealized_pnl_pct)}%)"
            )
    if holdings.dust:
        if lines:
            lines.append("")
        lines.append("【灰尘持仓（价值低于 $5，暂不可交易）】")
        for h in holdings.dust:
            lines.append(f"{h.asset}: {h.quantity:.6f} (价值 ${_money(h.value)}, 盈亏 {_signed(h.unrealized_pnl)})")
    lines.append(f"总未实现盈亏: {_signed(holdings.total_unrealized_pnl)}")
    return "\n".join(lines)


def format_futures_positions(context: AccountContext) -> str:
    positions = context.positions
    if positions is None or (not positions.tradeable and not positions.dust):
        return "无持仓"

    lines: List[str] = []
    for p in sorted(positions.tradeable, key=lambda v: (v.symbol, v.side)):
        held = f"{p.holding_hours:.1f}小时" if p.holding_hours is not None else "未知"
        lines.append(
            f"{p.symbol} {p.side}: 数量 {p.quantity}, 开仓价 {p.entry_price}, 标记价 {p.mark_price}, "
            f"杠杆 {p.leverage}x, 保证金 ${_money(p.margin)}, 未实现盈亏 {_signed(p.unrealized_pnl)} "
            f"(ROE {_signed(p.roe_pct)}%), 持仓时间 {held}"
        )
    if positions.dust:
        lines.append("【极小仓位（忽略）】")
        for p in sorted(positions.dust, key=lambda v: (v.symbol, v.side)):
            lines.append(f"{p.symbol} {p.side}: 数量 {p.quantity}")
    return "\n".join(lines)


def build_user_prompt(snapshots: Iterable[MarketSnapshot], context: AccountContext) -> str:
    """User prompt for one cycle."""
    futures = context.mode is TradingMode.FUTURES
    market = format_market_section(snapshots, futures)
    symbols = ", ".join(sorted(context.allowed_symbols)) or "全部"

    if futures:
        return f"""请分析以下合约交易对的市场状况：

{market}

当前持仓：
{format_futures_positions(context)}

账户信息：
- 可用余额: ${_money(context.available_balance)} USDT

风控限制：
- 单仓位最大保证金: ${_money(context.max_position_size)} USDT
- 最大杠杆倍数: {context.max_leverage}x
- 默认杠杆: {context.default_leverage}x
- 允许交易币种: {symbols}

请按照系统提示的格式输出，特别注意：
1. 必须明确给出"交易币种"（如 BTCUSDT）
2. 必须给出具体的杠杆倍数和保证金，杠杆不得超过 {context.max_leverage}x
3. 平仓时只能平掉已有的同方向持仓
4. 如果建议HOLD，保证金填0"""

    return f"""请分析以下交易对的市场状况：

{market}

当前持仓：
{format_spot_holdings(context)}

风控限制：
- 单笔最大买入金额: ${_money(context.max_trade_amount)} USDT
- 允许交易币种: {symbols}

请按照系统提示的格式输出，特别注意：
1. 必须明确给出"交易币种"（如 BTCUSDT）
2. 必须明确给出"交易金额"（单位USDT）
   - 买入时：交易金额不能超过 ${_money(context.max_trade_amount)}
   - 卖出时：交易金额为要卖出的币种的价值
3. 卖出时只能卖出"可交易持仓"中的币种，禁止卖出"灰尘持仓"
4. 如果建议HOLD，交易金额填0"""
