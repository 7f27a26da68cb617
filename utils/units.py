"""Token amount utilities for EVM tokens."""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Optional

# Used when a token's decimals cannot be read from chain
SYMBOL_DECIMALS = {
    "WBTC": 8,
    "USDC": 6,
    "USDT": 6,
}
DEFAULT_DECIMALS = 18

# Enough digits for uint256 amounts
_PRECISION = 80


def resolve_decimals(symbol: Optional[str]) -> int:
    """
    Resolve token decimals from its symbol.

    Args:
        symbol: Token symbol (e.g. "USDC")

    Returns:
        Decimal count (WBTC=8, USDC/USDT=6, otherwise 18)
    """
    if not symbol:
        return DEFAULT_DECIMALS
    return SYMBOL_DECIMALS.get(symbol.upper(), DEFAULT_DECIMALS)


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a human amount coming from a model or a form.

    Accepts ints, floats and numeric strings (commas and surrounding
    whitespace are tolerated). Returns None for anything that is not a
    finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def canonical_amount(amount: Decimal) -> str:
    """Render an amount as a plain decimal string ("0.1", "50")."""
    text = format(amount.normalize(), "f")
    return text


def to_base_units(amount: Any, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a human amount to base units.

    Args:
        amount: Human amount (str, int, float or Decimal)
        decimals: Token decimals

    Returns:
        Amount in base units, truncated toward zero
    """
    parsed = amount if isinstance(amount, Decimal) else parse_amount(amount)
    if parsed is None:
        raise ValueError(f"Invalid amount: {amount!r}")
    if parsed < 0:
        raise ValueError(f"Amount must not be negative: {amount!r}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = parsed * (Decimal(10) ** decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """
    Convert base units to a human-readable Decimal amount.

    Args:
        amount: Amount in base units
        decimals: Token decimals (18 for WETH, 6 for USDC, etc.)
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(amount)) / (Decimal(10) ** decimals)


def format_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Base units to a canonical human string."""
    return canonical_amount(from_base_units(amount, decimals))
