import asyncio

import pytest

from models.errors import (
    InsufficientLiquidity,
    InsufficientReserves,
    InvalidParameters,
    LedgerRejected,
    LedgerReverted,
    MissingInput,
    UnknownToken,
)
from models.schemas import AddLiquidityAction, RemoveLiquidityAction, SwapAction
from services import reserve_math
from services.action_executor import SWAP_FUNCTION, ActionExecutor
from tests.conftest import ETH, PAIR, ROUTER, USDC, USER, FakeLedger

NOW = 1_700_000_000


@pytest.fixture
def executor():
    return ActionExecutor(router_address=ROUTER)


def _swap(amount="0.1", from_symbol="ETH", to_symbol="USDC"):
    return SwapAction(from_symbol=from_symbol, to_symbol=to_symbol, human_amount=amount)


def test_swap_plan(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, allowances={}, now=NOW)

    amount_in = 10 ** 17
    amount_out = reserve_math.quote_output(amount_in, 10 * 10 ** 18, 20_000 * 10 ** 6, 30)
    assert 197_000_000 < amount_out < 199_400_000

    approve, swap = plan.calls
    assert (approve.address, approve.function_name, approve.args) == (ETH, "approve", [ROUTER, amount_in])
    assert swap.address == ROUTER
    assert swap.function_name == SWAP_FUNCTION
    assert swap.args == [
        amount_in,
        amount_out * 9_500 // 10_000,
        [ETH, USDC],
        USER,
        NOW + 1200,
    ]
    assert plan.deadline == NOW + 1200
    assert plan.slippage_bps == 500
    assert plan.quote["amountOut"] == str(amount_out)
    assert plan.pool is eth_usdc_pool


def test_swap_skips_approval_when_allowance_covers(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, allowances={ETH.upper(): 10 ** 18}, now=NOW)
    assert plan.approvals == []
    assert len(plan.calls) == 1


def test_swap_in_reverse_direction(executor, eth_usdc_pool):
    plan = executor.plan(_swap("2000", "USDC", "ETH"), eth_usdc_pool, USER, slippage_bps=100, now=NOW)

    router_call = plan.router_call
    assert router_call.args[0] == 2_000 * 10 ** 6
    assert router_call.args[2] == [USDC, ETH]
    expected = reserve_math.quote_output(2_000 * 10 ** 6, 20_000 * 10 ** 6, 10 * 10 ** 18)
    assert router_call.args[1] == expected * 9_900 // 10_000
    assert plan.slippage_bps == 100


def test_minimum_output_within_tolerance(executor, eth_usdc_pool):
    for tolerance in (0, 50, 500, 3_000):
        plan = executor.plan(_swap(), eth_usdc_pool, USER, slippage_bps=tolerance, now=NOW)
        amount_out = int(plan.quote["amountOut"])
        min_out = int(plan.quote["minAmountOut"])
        assert amount_out * (10_000 - tolerance) // 10_000 <= min_out <= amount_out


def test_swap_against_empty_pool_keeps_output_floor(executor, empty_pool):
    plan = executor.plan(_swap(), empty_pool, USER, now=NOW)
    assert plan.quote["amountOut"] == "0"
    assert plan.quote["minAmountOut"] == "1"
    assert plan.router_call.args[1] == 1
    assert plan.quote["priceImpact"] == "100"


def test_dust_swap_keeps_output_floor(executor, eth_usdc_pool):
    plan = executor.plan(_swap("0.000000000000000001"), eth_usdc_pool, USER, now=NOW)

    assert plan.router_call.args[0] == 1
    assert plan.quote["amountOut"] == "0"
    assert plan.router_call.args[1] == 1


def test_swap_validation(executor, eth_usdc_pool):
    with pytest.raises(UnknownToken):
        executor.plan(_swap(from_symbol="WBTC"), eth_usdc_pool, USER)
    with pytest.raises(InvalidParameters):
        executor.plan(_swap(to_symbol="ETH"), eth_usdc_pool, USER)
    with pytest.raises(InvalidParameters):
        executor.plan(_swap(amount="0.0000001", from_symbol="USDC", to_symbol="ETH"), eth_usdc_pool, USER)
    with pytest.raises(MissingInput):
        executor.plan(_swap(), eth_usdc_pool, "")


def test_add_liquidity_derives_missing_amount(executor, eth_usdc_pool):
    action = AddLiquidityAction(symbol0="ETH", symbol1="USDC", human_amount0="0.5")
    plan = executor.plan(action, eth_usdc_pool, USER, now=NOW)

    amount0 = 5 * 10 ** 17
    amount1 = reserve_math.derive_proportional_amount(amount0, 10 * 10 ** 18, 20_000 * 10 ** 6)
    assert amount1 == 1_000 * 10 ** 6

    *approvals, router_call = plan.calls
    assert [(c.address, c.args[1]) for c in approvals] == [(ETH, amount0), (USDC, amount1)]
    assert router_call.function_name == "addLiquidity"
    assert router_call.args == [
        ETH,
        USDC,
        amount0,
        amount1,
        amount0 * 9_500 // 10_000,
        amount1 * 9_500 // 10_000,
        USER,
        NOW + 1200,
    ]
    assert plan.quote["derivedSymbol"] == "USDC"
    assert plan.quote["humanAmount1"] == "1000"


def test_add_liquidity_maps_user_order_onto_pool_sides(executor, eth_usdc_pool):
    action = AddLiquidityAction(symbol0="USDC", symbol1="ETH", human_amount0="1000")
    plan = executor.plan(action, eth_usdc_pool, USER, now=NOW)

    assert plan.router_call.args[2:4] == [5 * 10 ** 17, 1_000 * 10 ** 6]
    assert plan.quote["derivedSymbol"] == "ETH"


def test_add_liquidity_with_both_amounts(executor, eth_usdc_pool):
    action = AddLiquidityAction(symbol0="ETH", symbol1="USDC", human_amount0="1", human_amount1="1500")
    plan = executor.plan(
        action,
        eth_usdc_pool,
        USER,
        allowances={ETH: 10 ** 18, USDC: 0},
        now=NOW,
    )

    assert [c.address for c in plan.approvals] == [USDC]
    assert plan.router_call.args[2:4] == [10 ** 18, 1_500 * 10 ** 6]
    assert "derivedSymbol" not in plan.quote


def test_add_liquidity_to_empty_pool_needs_both_amounts(executor, empty_pool):
    action = AddLiquidityAction(symbol0="ETH", symbol1="USDC", human_amount0="1")
    with pytest.raises(InsufficientReserves):
        executor.plan(action, empty_pool, USER)


def test_remove_half_of_position(executor, eth_usdc_pool):
    action = RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", percent="50")
    plan = executor.plan(
        action,
        eth_usdc_pool,
        USER,
        lp_balance=2 * 10 ** 18,
        total_supply=4 * 10 ** 18,
        now=NOW,
    )

    liquidity = 10 ** 18
    approve, router_call = plan.calls
    assert (approve.address, approve.contract, approve.args) == (PAIR, "pair", [ROUTER, liquidity])
    assert router_call.function_name == "removeLiquidity"

    expected0 = liquidity * 10 * 10 ** 18 // (4 * 10 ** 18)
    expected1 = liquidity * 20_000 * 10 ** 6 // (4 * 10 ** 18)
    assert router_call.args == [
        ETH,
        USDC,
        liquidity,
        expected0 * 9_500 // 10_000,
        expected1 * 9_500 // 10_000,
        USER,
        NOW + 1200,
    ]
    assert plan.quote["liquidity"] == str(liquidity)
    assert plan.quote["percent"] == "50"


def test_remove_by_token_amount(executor, eth_usdc_pool):
    # 1000 USDC of a 20000 USDC pool is 5% of supply, a tenth of a 50% position
    action = RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", human_amount1="1000")
    plan = executor.plan(
        action,
        eth_usdc_pool,
        USER,
        allowances={PAIR: 10 ** 30},
        lp_balance=2 * 10 ** 18,
        total_supply=4 * 10 ** 18,
        now=NOW,
    )

    assert plan.approvals == []
    assert plan.router_call.args[2] == 2 * 10 ** 17
    assert plan.quote["expectedAmount1"] == str(1_000 * 10 ** 6)


def test_remove_uses_floor_minimums_when_reserves_are_empty(executor, empty_pool):
    action = RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", percent="100")
    plan = executor.plan(
        action, empty_pool, USER, lp_balance=10 ** 18, total_supply=10 ** 18, now=NOW
    )
    assert plan.router_call.args[3:5] == [1, 1]


def test_remove_liquidity_errors(executor, eth_usdc_pool):
    action = RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", percent="50")
    with pytest.raises(MissingInput):
        executor.plan(action, eth_usdc_pool, USER)
    with pytest.raises(InsufficientLiquidity):
        executor.plan(action, eth_usdc_pool, USER, lp_balance=0, total_supply=10 ** 18)
    with pytest.raises(InsufficientLiquidity):
        executor.plan(
            RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", percent="10"),
            eth_usdc_pool,
            USER,
            lp_balance=5,
            total_supply=10 ** 18,
        )


@pytest.mark.parametrize("percent", ["half", "0", "-5", "150"])
def test_remove_liquidity_rejects_invalid_percent(executor, eth_usdc_pool, percent):
    action = RemoveLiquidityAction(symbol0="ETH", symbol1="USDC", percent=percent)
    with pytest.raises(InvalidParameters, match="Invalid percent"):
        executor.plan(action, eth_usdc_pool, USER, lp_balance=10 ** 18, total_supply=2 * 10 ** 18)


def test_plan_serializes_amounts_as_strings(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, now=NOW)
    data = plan.model_dump(mode="json", by_alias=True)

    assert data["action"] == {
        "function": "swap",
        "fromSymbol": "ETH",
        "toSymbol": "USDC",
        "humanAmount": "0.1",
    }
    assert data["pool"]["reserve0"] == str(10 * 10 ** 18)
    assert data["calls"][0]["args"] == [ROUTER, str(10 ** 17)]
    assert data["calls"][1]["functionName"] == SWAP_FUNCTION


def test_execute_submits_calls_in_order(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, now=NOW)
    ledger = FakeLedger()

    result = asyncio.run(executor.execute(plan, ledger))

    assert result.success
    assert [c.function_name for c in ledger.writes] == ["approve", SWAP_FUNCTION]
    assert result.tx_hashes == ledger.receipts_waited
    assert len(result.tx_hashes) == 2


def test_execute_stops_on_revert(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, now=NOW)
    first_hash = f"0x{1:064x}"
    ledger = FakeLedger(receipt_status={first_hash: 0})

    with pytest.raises(LedgerReverted) as exc_info:
        asyncio.run(executor.execute(plan, ledger))

    assert len(ledger.writes) == 1
    assert exc_info.value.details["txHashes"] == [first_hash]


def test_execute_maps_submission_failures(executor, eth_usdc_pool):
    plan = executor.plan(_swap(), eth_usdc_pool, USER, now=NOW)
    ledger = FakeLedger(fail_on=SWAP_FUNCTION)

    with pytest.raises(LedgerRejected) as exc_info:
        asyncio.run(executor.execute(plan, ledger))

    assert exc_info.value.details["txHashes"] == [f"0x{1:064x}"]
    assert [c.function_name for c in ledger.writes] == ["approve"]
