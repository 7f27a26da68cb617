"""Pydantic models for the AMM assistant."""
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

from utils.units import resolve_decimals

FEE_RATE_BPS = 30

ActionFunction = Literal["swap", "addLiquidity", "removeLiquidity"]


def _stringify_ints(value: Any) -> Any:
    """Render ints as decimal strings so JSON clients keep full precision."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_stringify_ints(item) for item in value]
    if isinstance(value, dict):
        return {key: _stringify_ints(item) for key, item in value.items()}
    return value


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PoolSnapshot(CamelModel):
    """Immutable view of one trading pair at a point in time."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    address: str
    token0: str
    token1: str
    token0_symbol: str
    token1_symbol: str
    reserve0: int = Field(ge=0)  # Base units of token0
    reserve1: int = Field(ge=0)  # Base units of token1
    fee_rate_bps: int = FEE_RATE_BPS
    decimals0: int = Field(default=18, ge=0, le=77)
    decimals1: int = Field(default=18, ge=0, le=77)
    block_timestamp_last: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_decimals(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for side in ("0", "1"):
            # The UI sends token0Decimals, pair-data responses too
            alt_key = f"token{side}Decimals"
            if data.get(f"decimals{side}") is None and data.get(alt_key) is not None:
                data[f"decimals{side}"] = data[alt_key]
            if data.get(f"decimals{side}") is None:
                symbol = data.get(f"token{side}Symbol", data.get(f"token{side}_symbol"))
                data[f"decimals{side}"] = resolve_decimals(symbol)
            data.pop(alt_key, None)
        return data

    @field_serializer("reserve0", "reserve1", when_used="json")
    def _serialize_reserve(self, value: int) -> str:
        return str(value)

    @property
    def symbols(self) -> Tuple[str, str]:
        return self.token0_symbol, self.token1_symbol

    @property
    def k(self) -> int:
        return self.reserve0 * self.reserve1

    def side_of(self, symbol: str) -> Optional[int]:
        """Pool side (0 or 1) holding ``symbol``, matched case-insensitively."""
        wanted = symbol.strip().upper()
        if wanted == self.token0_symbol.upper():
            return 0
        if wanted == self.token1_symbol.upper():
            return 1
        return None

    def token_of(self, side: int) -> str:
        return self.token0 if side == 0 else self.token1

    def symbol_of(self, side: int) -> str:
        return self.token0_symbol if side == 0 else self.token1_symbol

    def reserve_of(self, side: int) -> int:
        return self.reserve0 if side == 0 else self.reserve1

    def decimals_of(self, side: int) -> int:
        return self.decimals0 if side == 0 else self.decimals1


class _ActionBase(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    # Snapshot the action was resolved against; not part of the wire form
    pool: Optional[PoolSnapshot] = Field(default=None, exclude=True)


class SwapAction(_ActionBase):
    """Swap an exact amount of one pool token for the other."""
    function: Literal["swap"] = "swap"
    from_symbol: str
    to_symbol: str
    human_amount: str

    def describe(self) -> str:
        return f"Swap {self.human_amount} {self.from_symbol} for {self.to_symbol}"


class AddLiquidityAction(_ActionBase):
    """Deposit both pool tokens; a missing amount is derived from reserves."""
    function: Literal["addLiquidity"] = "addLiquidity"
    symbol0: str
    symbol1: str
    human_amount0: Optional[str] = None
    human_amount1: Optional[str] = None

    def describe(self) -> str:
        amount0 = self.human_amount0 or "(derived)"
        amount1 = self.human_amount1 or "(derived)"
        return f"Add liquidity with {amount0} {self.symbol0} and {amount1} {self.symbol1}"


class RemoveLiquidityAction(_ActionBase):
    """Burn part of an LP position, by percent or by one token amount."""
    function: Literal["removeLiquidity"] = "removeLiquidity"
    symbol0: str
    symbol1: str
    percent: Optional[str] = None
    human_amount0: Optional[str] = None
    human_amount1: Optional[str] = None

    def describe(self) -> str:
        if self.percent is not None:
            return f"Remove {self.percent}% of liquidity from {self.symbol0}/{self.symbol1} pool"
        if self.human_amount0 is not None:
            return f"Remove liquidity worth {self.human_amount0} {self.symbol0} from {self.symbol0}/{self.symbol1} pool"
        return f"Remove liquidity worth {self.human_amount1} {self.symbol1} from {self.symbol0}/{self.symbol1} pool"


Action = Annotated[
    Union[SwapAction, AddLiquidityAction, RemoveLiquidityAction],
    Field(discriminator="function"),
]


class ContractCall(CamelModel):
    """One ledger call: contract address, ABI name, function and arguments."""
    address: str
    contract: Literal["erc20", "pair", "router", "factory"]
    function_name: str
    args: List[Any] = Field(default_factory=list)
    value: int = 0

    @field_serializer("args", when_used="json")
    def _serialize_args(self, value: List[Any]) -> List[Any]:
        return _stringify_ints(value)

    @field_serializer("value", when_used="json")
    def _serialize_value(self, value: int) -> str:
        return str(value)


class ExecutionPlan(CamelModel):
    """Approvals followed by exactly one router call, built for one confirmation."""
    action: Action
    pool: PoolSnapshot
    calls: List[ContractCall]
    deadline: int
    slippage_bps: int
    quote: Dict[str, str] = Field(default_factory=dict)

    @property
    def approvals(self) -> List[ContractCall]:
        return [call for call in self.calls if call.function_name == "approve"]

    @property
    def router_call(self) -> ContractCall:
        return self.calls[-1]


class ExecutionResult(CamelModel):
    """Transaction hashes of a submitted plan, in submission order."""
    success: bool
    tx_hashes: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class CompletionResult(BaseModel):
    """Completion text normalized from any supported response envelope."""
    text: str
    source: Literal["primary", "fallback"] = "primary"
    envelope: Literal["choices", "response", "output", "string"] = "choices"


class ResolveActionRequest(CamelModel):
    """Body of POST /resolve-action."""
    input: Optional[str] = None
    pool: Optional[PoolSnapshot] = None
    api_key: Optional[str] = None
    custom_endpoint: Optional[str] = None


class ResolveActionResponse(CamelModel):
    success: bool
    action: Optional[Action] = None
    description: Optional[str] = None
    message: Optional[str] = None


class PlanActionRequest(CamelModel):
    """Body of POST /plan-action."""
    action: Action
    pool: PoolSnapshot
    user_address: str
    allowances: Dict[str, int] = Field(default_factory=dict)
    lp_balance: Optional[int] = None
    total_supply: Optional[int] = None
    slippage_bps: Optional[int] = Field(default=None, ge=0, le=10_000)


class ExecuteActionRequest(CamelModel):
    """Body of POST /execute-action."""
    action: Action
    pool: Optional[PoolSnapshot] = None
    slippage_bps: Optional[int] = Field(default=None, ge=0, le=10_000)


class PairData(CamelModel):
    """On-chain pair state; amounts as decimal strings."""
    token0: str
    token1: str
    token0_symbol: str
    token1_symbol: str
    token0_decimals: int
    token1_decimals: int
    reserve0: str
    reserve1: str
    block_timestamp_last: int

    def to_snapshot(self, address: str) -> PoolSnapshot:
        return PoolSnapshot(
            address=address,
            token0=self.token0,
            token1=self.token1,
            token0_symbol=self.token0_symbol,
            token1_symbol=self.token1_symbol,
            reserve0=int(self.reserve0),
            reserve1=int(self.reserve1),
            decimals0=self.token0_decimals,
            decimals1=self.token1_decimals,
            block_timestamp_last=self.block_timestamp_last,
        )


class SwapEvent(BaseModel):
    """Decoded pair Swap event."""
    block_number: int
    amount0_in: int = 0
    amount1_in: int = 0
    amount0_out: int = 0
    amount1_out: int = 0


class SwapHistory(CamelModel):
    """Per-day swap aggregates for charting."""
    labels: List[str]
    volume_data: List[float]
    price_data: List[float]
    swap_count: int


class SwapQuote(CamelModel):
    """Preview of a single-pool swap."""
    from_symbol: str
    to_symbol: str
    amount_in: str
    amount_out: str
    min_amount_out: str
    price_impact: str  # Percent, e.g. "0.87"
    spot_price: str
    execution_price: str
    slippage_bps: int


class CurvePoint(BaseModel):
    x: float
    y: float
