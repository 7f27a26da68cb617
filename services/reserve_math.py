"""Constant-product (x * y = k) reserve math.

All amounts are integers in base units. Divisions truncate the same way the
pair and router contracts do, so quotes match on-chain results exactly.
"""
from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import List, Tuple

from models.errors import InsufficientLiquidity, InsufficientReserves

BPS = 10_000
DEFAULT_FEE_BPS = 30

_PRECISION = 80


def _check_non_negative(**values: int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must not be negative (got {value})")


def quote_output(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_rate_bps: int = DEFAULT_FEE_BPS,
) -> int:
    """
    Maximum output for an exact input, net of the trading fee.

    Returns 0 for a pool with an empty side (not tradable).
    """
    _check_non_negative(amount_in=amount_in, reserve_in=reserve_in, reserve_out=reserve_out)
    if reserve_in == 0 or reserve_out == 0:
        return 0

    amount_in_with_fee = amount_in * (BPS - fee_rate_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BPS + amount_in_with_fee
    return numerator // denominator


def quote_input(
    amount_out: int,
    reserve_in: int,
    reserve_out: int,
    fee_rate_bps: int = DEFAULT_FEE_BPS,
) -> int:
    """Minimum input needed to receive ``amount_out`` (router getAmountIn)."""
    _check_non_negative(amount_out=amount_out, reserve_in=reserve_in, reserve_out=reserve_out)
    if reserve_in == 0 or reserve_out == 0 or amount_out >= reserve_out:
        raise InsufficientReserves("Cannot calculate amount: insufficient reserves")
    if amount_out == 0:
        return 0

    numerator = reserve_in * amount_out * BPS
    denominator = (reserve_out - amount_out) * (BPS - fee_rate_bps)
    return numerator // denominator + 1


def price_impact(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_rate_bps: int = DEFAULT_FEE_BPS,
) -> Decimal:
    """
    Relative gap between the spot price and the execution price.

    Returns a fraction clamped to [0, 1] (0.01 = 1%).
    """
    _check_non_negative(amount_in=amount_in, reserve_in=reserve_in, reserve_out=reserve_out)
    if amount_in == 0:
        return Decimal(0)
    if reserve_in == 0 or reserve_out == 0:
        return Decimal(1)

    amount_out = quote_output(amount_in, reserve_in, reserve_out, fee_rate_bps)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        spot = Decimal(reserve_out) / Decimal(reserve_in)
        execution = Decimal(amount_out) / Decimal(amount_in)
        impact = abs(spot - execution) / spot
    return min(max(impact, Decimal(0)), Decimal(1))


def price_impact_bps(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_rate_bps: int = DEFAULT_FEE_BPS,
) -> int:
    """Price impact in basis points (floor)."""
    impact = price_impact(amount_in, reserve_in, reserve_out, fee_rate_bps)
    return int((impact * BPS).to_integral_value(rounding=ROUND_FLOOR))


def apply_slippage(amount: int, tolerance_bps: int, direction: str = "min") -> int:
    """
    Slippage-bounded amount.

    Args:
        amount: Quoted amount in base units
        tolerance_bps: Tolerance in basis points (500 = 5%)
        direction: "min" for a minimum acceptable output,
            "max" for a maximum acceptable input

    Returns:
        Bound in base units. A positive minimum never rounds down to 0.
    """
    _check_non_negative(amount=amount)
    if not 0 <= tolerance_bps <= BPS:
        raise ValueError(f"tolerance_bps must be within [0, {BPS}] (got {tolerance_bps})")

    if direction == "min":
        bound = amount * (BPS - tolerance_bps) // BPS
        if bound == 0 and amount > 0:
            return 1
        return bound
    if direction == "max":
        return -(-amount * (BPS + tolerance_bps) // BPS)
    raise ValueError(f"Unknown slippage direction: {direction}")


def derive_proportional_amount(known_amount: int, known_reserve: int, other_reserve: int) -> int:
    """Other side of a deposit that keeps the pool ratio unchanged."""
    _check_non_negative(
        known_amount=known_amount, known_reserve=known_reserve, other_reserve=other_reserve
    )
    if known_reserve == 0:
        raise InsufficientReserves("Cannot calculate amount: pool has no reserves")
    return known_amount * other_reserve // known_reserve


def percent_from_amount(
    amount: int,
    reserve: int,
    total_lp_supply: int,
    user_lp_balance: int,
) -> Decimal:
    """
    Share of the user's LP position needed to withdraw ``amount`` of one token.

    Returns a fraction in [0, 1]; requests above the user's balance are
    clamped to the whole position.
    """
    _check_non_negative(
        amount=amount,
        reserve=reserve,
        total_lp_supply=total_lp_supply,
        user_lp_balance=user_lp_balance,
    )
    if reserve == 0:
        raise InsufficientReserves("Cannot calculate amount: pool has no reserves")
    if user_lp_balance == 0:
        raise InsufficientLiquidity("No liquidity position to withdraw from")

    required_lp = amount * total_lp_supply // reserve
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        fraction = Decimal(required_lp) / Decimal(user_lp_balance)
    return min(fraction, Decimal(1))


def liquidity_for_percent(user_lp_balance: int, percent: Decimal) -> int:
    """LP tokens to burn for a fraction (0..1) of the position."""
    _check_non_negative(user_lp_balance=user_lp_balance)
    if not Decimal(0) <= percent <= Decimal(1):
        raise ValueError(f"percent must be a fraction within [0, 1] (got {percent})")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int((Decimal(user_lp_balance) * percent).to_integral_value(rounding=ROUND_FLOOR))


def withdrawal_amount(liquidity: int, reserve: int, total_lp_supply: int) -> int:
    """Token amount returned when burning ``liquidity`` LP tokens."""
    _check_non_negative(liquidity=liquidity, reserve=reserve, total_lp_supply=total_lp_supply)
    if total_lp_supply == 0:
        return 0
    return liquidity * reserve // total_lp_supply


def spot_price(reserve_in: int, reserve_out: int, decimals_in: int, decimals_out: int) -> Decimal:
    """Output tokens per input token in human units (display only)."""
    if reserve_in == 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        human_in = Decimal(reserve_in) / (Decimal(10) ** decimals_in)
        human_out = Decimal(reserve_out) / (Decimal(10) ** decimals_out)
        return human_out / human_in


def curve_points(
    reserve0: int,
    reserve1: int,
    decimals0: int,
    decimals1: int,
    num_points: int = 100,
) -> List[Tuple[float, float]]:
    """
    Sample the x * y = k curve between 0.1x and 3x the current reserve0.

    Returns (x, y) pairs in human units for charting.
    """
    if num_points < 1:
        raise ValueError("num_points must be positive")
    if reserve0 == 0 or reserve1 == 0:
        return []

    current_x = reserve0 / 10 ** decimals0
    current_y = reserve1 / 10 ** decimals1
    k = current_x * current_y

    min_x = current_x * 0.1
    max_x = current_x * 3
    step = (max_x - min_x) / num_points

    points = []
    for i in range(num_points + 1):
        x = min_x + step * i
        points.append((x, k / x))
    return points
