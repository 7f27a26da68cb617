"""Execution planning and submission for resolved actions."""
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol

from loguru import logger

from models.errors import (
    AmmError,
    InsufficientLiquidity,
    InsufficientReserves,
    InvalidParameters,
    LedgerRejected,
    LedgerReverted,
    MissingInput,
    UnknownToken,
)
from models.schemas import (
    AddLiquidityAction,
    ContractCall,
    ExecutionPlan,
    ExecutionResult,
    PoolSnapshot,
    RemoveLiquidityAction,
    SwapAction,
)
from services import reserve_math
from utils.units import canonical_amount, format_units, parse_amount, to_base_units

DEFAULT_SLIPPAGE_BPS = 500  # 5%
DEFAULT_DEADLINE_SECONDS = 20 * 60

SWAP_FUNCTION = "swapExactTokensForTokensSupportingFeeOnTransferTokens"


class Ledger(Protocol):
    async def write_contract(self, call: ContractCall) -> str:
        ...

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        ...


def _side(pool: PoolSnapshot, symbol: str) -> int:
    side = pool.side_of(symbol)
    if side is None:
        raise UnknownToken(
            f"Unknown token: {symbol}. This pool only trades "
            f"{pool.token0_symbol} and {pool.token1_symbol}"
        )
    return side


def _allowance(allowances: Mapping[str, int], token: str) -> int:
    for address, amount in allowances.items():
        if address.lower() == token.lower():
            return int(amount)
    return 0


def _base_amount(human_amount: str, decimals: int, label: str) -> int:
    try:
        amount = to_base_units(human_amount, decimals)
    except ValueError as e:
        raise InvalidParameters(f"Invalid {label}: {human_amount}") from e
    if amount <= 0:
        raise InvalidParameters(f"{label} is below the token's smallest unit: {human_amount}")
    return amount


class ActionExecutor:
    """Builds ledger-call plans for actions and submits them in order."""

    def __init__(
        self,
        router_address: str,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        deadline_seconds: int = DEFAULT_DEADLINE_SECONDS,
    ):
        self.router_address = router_address
        self.slippage_bps = slippage_bps
        self.deadline_seconds = deadline_seconds

    def plan(
        self,
        action,
        pool: PoolSnapshot,
        user_address: str,
        allowances: Optional[Mapping[str, int]] = None,
        lp_balance: Optional[int] = None,
        total_supply: Optional[int] = None,
        slippage_bps: Optional[int] = None,
        now: Optional[int] = None,
    ) -> ExecutionPlan:
        """
        Build the approvals and router call for an action.

        Args:
            action: Resolved action
            pool: Snapshot the plan is priced against
            user_address: Recipient of outputs and owner of inputs
            allowances: Current router allowance per token address
            lp_balance: User's LP token balance (removals only)
            total_supply: Pair LP total supply (removals only)
            slippage_bps: Overrides the configured tolerance
            now: Unix time used for the deadline

        Returns:
            ExecutionPlan
        """
        if not user_address:
            raise MissingInput("Missing user address")

        allowances = allowances or {}
        tolerance = self.slippage_bps if slippage_bps is None else slippage_bps
        deadline = int(now if now is not None else time.time()) + self.deadline_seconds

        if isinstance(action, SwapAction):
            calls, quote = self._plan_swap(action, pool, user_address, allowances, tolerance, deadline)
        elif isinstance(action, AddLiquidityAction):
            calls, quote = self._plan_add_liquidity(
                action, pool, user_address, allowances, tolerance, deadline
            )
        elif isinstance(action, RemoveLiquidityAction):
            calls, quote = self._plan_remove_liquidity(
                action, pool, user_address, allowances, lp_balance, total_supply, tolerance, deadline
            )
        else:
            raise InvalidParameters(f"Unsupported action: {action!r}")

        plan = ExecutionPlan(
            action=action,
            pool=pool,
            calls=calls,
            deadline=deadline,
            slippage_bps=tolerance,
            quote=quote,
        )
        logger.info(
            "Planned {}: {} approval(s) + {}",
            action.describe(),
            len(plan.approvals),
            plan.router_call.function_name,
        )
        return plan

    def _approve(self, token: str, amount: int) -> ContractCall:
        return ContractCall(
            address=token,
            contract="erc20",
            function_name="approve",
            args=[self.router_address, amount],
        )

    def _plan_swap(self, action, pool, user_address, allowances, tolerance, deadline):
        side_in = _side(pool, action.from_symbol)
        side_out = _side(pool, action.to_symbol)
        if side_in == side_out:
            raise InvalidParameters("Cannot swap a token for itself")

        token_in = pool.token_of(side_in)
        token_out = pool.token_of(side_out)
        amount_in = _base_amount(action.human_amount, pool.decimals_of(side_in), "amount")

        reserve_in = pool.reserve_of(side_in)
        reserve_out = pool.reserve_of(side_out)
        amount_out = reserve_math.quote_output(amount_in, reserve_in, reserve_out, pool.fee_rate_bps)
        min_amount_out = reserve_math.apply_slippage(amount_out, tolerance, "min")
        if amount_in > 0:
            # Never submit a swap without an output floor
            min_amount_out = max(min_amount_out, 1)
        impact = reserve_math.price_impact(amount_in, reserve_in, reserve_out, pool.fee_rate_bps)

        calls: List[ContractCall] = []
        if _allowance(allowances, token_in) < amount_in:
            calls.append(self._approve(token_in, amount_in))
        calls.append(
            ContractCall(
                address=self.router_address,
                contract="router",
                function_name=SWAP_FUNCTION,
                args=[amount_in, min_amount_out, [token_in, token_out], user_address, deadline],
            )
        )

        quote = {
            "amountIn": str(amount_in),
            "amountOut": str(amount_out),
            "minAmountOut": str(min_amount_out),
            "humanAmountOut": format_units(amount_out, pool.decimals_of(side_out)),
            "humanMinAmountOut": format_units(min_amount_out, pool.decimals_of(side_out)),
            "priceImpact": canonical_amount((impact * 100).quantize(Decimal("0.0001"))),
        }
        return calls, quote

    def _plan_add_liquidity(self, action, pool, user_address, allowances, tolerance, deadline):
        side_a = _side(pool, action.symbol0)
        side_b = _side(pool, action.symbol1)
        if side_a == side_b:
            raise InvalidParameters("Liquidity requires both pool tokens")

        # Amounts indexed by pool side
        human = {side_a: action.human_amount0, side_b: action.human_amount1}
        amounts: Dict[int, Optional[int]] = {
            side: (_base_amount(value, pool.decimals_of(side), f"amount of {pool.symbol_of(side)}")
                   if value is not None else None)
            for side, value in human.items()
        }

        derived_side = None
        for side in (0, 1):
            if amounts[side] is None:
                other = 1 - side
                if amounts[other] is None:
                    raise InvalidParameters("At least one deposit amount is required")
                amounts[side] = reserve_math.derive_proportional_amount(
                    amounts[other], pool.reserve_of(other), pool.reserve_of(side)
                )
                if amounts[side] == 0:
                    raise InsufficientReserves("Cannot calculate amount: pool has no reserves")
                derived_side = side
                logger.info(
                    "Derived {} {} from {} {} at current reserves",
                    format_units(amounts[side], pool.decimals_of(side)),
                    pool.symbol_of(side),
                    format_units(amounts[other], pool.decimals_of(other)),
                    pool.symbol_of(other),
                )

        amount0, amount1 = amounts[0], amounts[1]
        min0 = reserve_math.apply_slippage(amount0, tolerance, "min")
        min1 = reserve_math.apply_slippage(amount1, tolerance, "min")

        calls: List[ContractCall] = []
        if _allowance(allowances, pool.token0) < amount0:
            calls.append(self._approve(pool.token0, amount0))
        if _allowance(allowances, pool.token1) < amount1:
            calls.append(self._approve(pool.token1, amount1))
        calls.append(
            ContractCall(
                address=self.router_address,
                contract="router",
                function_name="addLiquidity",
                args=[pool.token0, pool.token1, amount0, amount1, min0, min1, user_address, deadline],
            )
        )

        quote = {
            "amount0": str(amount0),
            "amount1": str(amount1),
            "minAmount0": str(min0),
            "minAmount1": str(min1),
            "humanAmount0": format_units(amount0, pool.decimals0),
            "humanAmount1": format_units(amount1, pool.decimals1),
        }
        if derived_side is not None:
            quote["derivedSymbol"] = pool.symbol_of(derived_side)
        return calls, quote

    def _plan_remove_liquidity(
        self, action, pool, user_address, allowances, lp_balance, total_supply, tolerance, deadline
    ):
        side_a = _side(pool, action.symbol0)
        side_b = _side(pool, action.symbol1)
        if side_a == side_b:
            raise InvalidParameters("Liquidity removal requires both pool tokens")
        if lp_balance is None or total_supply is None:
            raise MissingInput("LP balance and total supply are required to remove liquidity")
        if lp_balance <= 0:
            raise InsufficientLiquidity("No liquidity position to withdraw from")

        if action.percent is not None:
            requested = parse_amount(action.percent)
            if requested is None or not 0 < requested <= 100:
                raise InvalidParameters(f"Invalid percent: {action.percent}. Must be between 0 and 100")
            percent = requested / 100
        else:
            if action.human_amount0 is not None:
                side, human_amount = side_a, action.human_amount0
            else:
                side, human_amount = side_b, action.human_amount1
            wanted = _base_amount(human_amount, pool.decimals_of(side), f"amount of {pool.symbol_of(side)}")
            percent = reserve_math.percent_from_amount(
                wanted, pool.reserve_of(side), total_supply, lp_balance
            )
        try:
            liquidity = reserve_math.liquidity_for_percent(lp_balance, percent)
        except ValueError as e:
            raise InvalidParameters(str(e)) from e
        if liquidity == 0:
            raise InsufficientLiquidity("Requested withdrawal is below one LP token unit")

        expected0 = reserve_math.withdrawal_amount(liquidity, pool.reserve0, total_supply)
        expected1 = reserve_math.withdrawal_amount(liquidity, pool.reserve1, total_supply)
        if expected0 == 0 or expected1 == 0:
            # Stale or empty reserves: keep a nonzero floor instead of blocking
            logger.warning(
                "Reserves or supply unavailable for {}; using minimum output of 1 base unit",
                pool.address,
            )
            min0 = min1 = 1
        else:
            min0 = reserve_math.apply_slippage(expected0, tolerance, "min")
            min1 = reserve_math.apply_slippage(expected1, tolerance, "min")

        calls: List[ContractCall] = []
        if _allowance(allowances, pool.address) < liquidity:
            calls.append(
                ContractCall(
                    address=pool.address,
                    contract="pair",
                    function_name="approve",
                    args=[self.router_address, liquidity],
                )
            )
        calls.append(
            ContractCall(
                address=self.router_address,
                contract="router",
                function_name="removeLiquidity",
                args=[pool.token0, pool.token1, liquidity, min0, min1, user_address, deadline],
            )
        )

        quote = {
            "liquidity": str(liquidity),
            "percent": canonical_amount((percent * 100).quantize(Decimal("0.0001"))),
            "expectedAmount0": str(expected0),
            "expectedAmount1": str(expected1),
            "minAmount0": str(min0),
            "minAmount1": str(min1),
        }
        return calls, quote

    async def execute(self, plan: ExecutionPlan, ledger: Ledger) -> ExecutionResult:
        """
        Submit a plan call by call.

        Each receipt is awaited before the next call is sent. Failures are
        raised as-is and nothing is resubmitted.
        """
        tx_hashes: List[str] = []
        for index, call in enumerate(plan.calls, start=1):
            logger.info(
                "Submitting call {}/{}: {} on {}",
                index,
                len(plan.calls),
                call.function_name,
                call.address,
            )
            try:
                tx_hash = await ledger.write_contract(call)
                tx_hashes.append(tx_hash)
                receipt = await ledger.wait_for_receipt(tx_hash)
            except AmmError:
                raise
            except Exception as e:
                logger.error("Ledger rejected {}: {}", call.function_name, e)
                raise LedgerRejected(
                    f"Transaction rejected: {e}",
                    details={"txHashes": tx_hashes},
                ) from e

            if receipt.get("status") != 1:
                logger.error("Transaction reverted: {} ({})", tx_hash, call.function_name)
                raise LedgerReverted(
                    f"Transaction reverted: {call.function_name}",
                    details={"txHashes": tx_hashes},
                )
            logger.info("Call {}/{} confirmed: {}", index, len(plan.calls), tx_hash)

        return ExecutionResult(success=True, tx_hashes=tx_hashes)
