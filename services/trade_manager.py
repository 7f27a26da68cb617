"""Plans and submits resolved actions with the configured signer."""
from typing import Dict, Optional

from loguru import logger

from exchange.ledger_client import LedgerClient
from models.errors import MissingInput, MissingPoolContext
from models.schemas import (
    ContractCall,
    ExecutionPlan,
    ExecutionResult,
    PoolSnapshot,
    RemoveLiquidityAction,
    SwapAction,
)
from services.action_executor import ActionExecutor
from services.pool_catalog import PoolCatalog


class TradeManager:
    """Reads on-chain allowances and balances, then plans and executes actions."""

    def __init__(
        self,
        ledger: LedgerClient,
        executor: ActionExecutor,
        catalog: PoolCatalog,
    ):
        self.ledger = ledger
        self.executor = executor
        self.catalog = catalog

    def _pool_for(self, action, pool: Optional[PoolSnapshot]) -> PoolSnapshot:
        pool = pool or action.pool
        if pool is None:
            raise MissingPoolContext("Missing pool information")
        return pool

    async def _allowance(self, token: str, owner: str, contract: str = "erc20") -> int:
        return await self.ledger.read_contract(
            ContractCall(
                address=token,
                contract=contract,
                function_name="allowance",
                args=[owner, self.executor.router_address],
            )
        )

    async def prepare(
        self,
        action,
        pool: Optional[PoolSnapshot] = None,
        slippage_bps: Optional[int] = None,
    ) -> ExecutionPlan:
        """
        Build a plan for the signer account.

        Args:
            action: Resolved action
            pool: Snapshot to price against (defaults to the action's own)
            slippage_bps: Overrides the configured tolerance

        Returns:
            ExecutionPlan
        """
        user_address = self.ledger.signer_address
        if not user_address:
            raise MissingInput("No signer configured; set a private key to execute actions")
        pool = self._pool_for(action, pool)

        allowances: Dict[str, int] = {}
        lp_balance = None
        total_supply = None

        if isinstance(action, SwapAction):
            side = pool.side_of(action.from_symbol)
            if side is not None:
                token = pool.token_of(side)
                allowances[token] = await self._allowance(token, user_address)
        elif isinstance(action, RemoveLiquidityAction):
            allowances[pool.address] = await self._allowance(pool.address, user_address, "pair")
            lp_balance = await self.ledger.read_contract(
                ContractCall(
                    address=pool.address,
                    contract="pair",
                    function_name="balanceOf",
                    args=[user_address],
                )
            )
            total_supply = await self.ledger.read_contract(
                ContractCall(address=pool.address, contract="pair", function_name="totalSupply")
            )
        else:
            for token in (pool.token0, pool.token1):
                allowances[token] = await self._allowance(token, user_address)

        return self.executor.plan(
            action,
            pool,
            user_address,
            allowances=allowances,
            lp_balance=lp_balance,
            total_supply=total_supply,
            slippage_bps=slippage_bps,
        )

    async def execute(
        self,
        action,
        pool: Optional[PoolSnapshot] = None,
        slippage_bps: Optional[int] = None,
    ) -> ExecutionResult:
        """Plan and submit an action, then refresh the pool snapshot."""
        plan = await self.prepare(action, pool, slippage_bps)
        result = await self.executor.execute(plan, self.ledger)

        logger.info(
            "Action completed: {} ({} transaction(s))",
            action.describe(),
            len(result.tx_hashes),
        )

        if plan.pool.address.lower() in {p.lower() for p in self.catalog.known_pairs}:
            try:
                await self.catalog.refresh(plan.pool.address)
            except Exception as e:
                logger.warning("Failed to refresh pool {} after execution: {}", plan.pool.address, e)

        return result
