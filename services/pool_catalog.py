"""Known pools and their latest snapshots."""
from typing import Any, Dict, List, Optional, Protocol, Tuple

from loguru import logger

from exchange.abis import ZERO_ADDRESS
from models.errors import InvalidParameters, MissingInput
from models.schemas import ContractCall, PairData, PoolSnapshot
from utils.units import resolve_decimals


class LedgerReader(Protocol):
    async def read_contract(self, call: ContractCall) -> Any:
        ...


class PoolCatalog:
    """Tracks known pairs and replaces their snapshots on refresh."""

    def __init__(
        self,
        ledger: Optional[LedgerReader],
        factory_address: Optional[str] = None,
        known_pairs: Optional[List[str]] = None,
        static_pools: Optional[List[Dict[str, Any]]] = None,
    ):
        self.ledger = ledger
        self.factory_address = factory_address
        self.known_pairs = list(known_pairs or [])
        self._pools: Dict[str, PoolSnapshot] = {}
        self._static: set = set()

        for pool_config in static_pools or []:
            snapshot = PoolSnapshot.model_validate(pool_config)
            self._pools[snapshot.address.lower()] = snapshot
            self._static.add(snapshot.address.lower())

        logger.info(
            "Pool catalog initialized: {} known pair(s), {} static pool(s)",
            len(self.known_pairs),
            len(self._static),
        )

    def pools(self) -> List[PoolSnapshot]:
        return list(self._pools.values())

    def snapshot(self, address: str) -> Optional[PoolSnapshot]:
        """Latest snapshot for a pool address, if any."""
        return self._pools.get(address.lower())

    def pair_by_index(self, index: int) -> Optional[str]:
        """Address from the known-pairs list, or None when out of range."""
        if index < 0:
            raise InvalidParameters("Invalid index parameter")
        if index < len(self.known_pairs):
            return self.known_pairs[index]
        logger.info("Index {} is out of range for known pairs", index)
        return None

    async def get_pair_address(
        self,
        token_a: str,
        token_b: str,
        factory: Optional[str] = None,
    ) -> Optional[str]:
        """
        Look up a pair through the factory.

        The reverse token order is tried when the first lookup returns the
        zero address.
        """
        factory = factory or self.factory_address
        if not factory:
            raise MissingInput("Missing factory address")

        for first, second in ((token_a, token_b), (token_b, token_a)):
            address = await self.ledger.read_contract(
                ContractCall(
                    address=factory,
                    contract="factory",
                    function_name="getPair",
                    args=[first, second],
                )
            )
            if address and address != ZERO_ADDRESS:
                logger.info("Got pool address: {}", address)
                return address
            logger.debug("Pool not found for {}/{}", first, second)

        logger.info("Pool not found for {}/{}", token_a, token_b)
        return None

    async def _token_metadata(self, token: str) -> Tuple[str, int]:
        """Symbol and decimals of a token, with fallbacks when reads fail."""
        symbol = "Unknown"
        try:
            symbol = await self.ledger.read_contract(
                ContractCall(address=token, contract="erc20", function_name="symbol")
            )
            decimals = await self.ledger.read_contract(
                ContractCall(address=token, contract="erc20", function_name="decimals")
            )
            return symbol, int(decimals)
        except Exception as e:
            logger.warning("Failed to retrieve token information for {}: {}", token, e)
            return symbol, resolve_decimals(symbol)

    async def fetch_pair_data(self, pair: str) -> PairData:
        """
        Read token addresses, reserves and token metadata of a pair.

        Args:
            pair: Pair contract address

        Returns:
            PairData with reserves as decimal strings
        """
        token0 = await self.ledger.read_contract(
            ContractCall(address=pair, contract="pair", function_name="token0")
        )
        token1 = await self.ledger.read_contract(
            ContractCall(address=pair, contract="pair", function_name="token1")
        )
        reserve0, reserve1, block_timestamp_last = await self.ledger.read_contract(
            ContractCall(address=pair, contract="pair", function_name="getReserves")
        )

        symbol0, decimals0 = await self._token_metadata(token0)
        symbol1, decimals1 = await self._token_metadata(token1)

        logger.debug(
            "Pair {}: {} {} / {} {} (blockTimestampLast {})",
            pair,
            reserve0,
            symbol0,
            reserve1,
            symbol1,
            block_timestamp_last,
        )
        return PairData(
            token0=token0,
            token1=token1,
            token0_symbol=symbol0,
            token1_symbol=symbol1,
            token0_decimals=decimals0,
            token1_decimals=decimals1,
            reserve0=str(reserve0),
            reserve1=str(reserve1),
            block_timestamp_last=int(block_timestamp_last),
        )

    async def refresh(self, pair: str) -> PoolSnapshot:
        """Read a pair from chain and replace its snapshot wholesale."""
        data = await self.fetch_pair_data(pair)
        snapshot = data.to_snapshot(pair)
        self._pools[pair.lower()] = snapshot
        return snapshot

    async def refresh_all(self) -> List[PoolSnapshot]:
        """Refresh every known on-chain pair; failures are logged and skipped."""
        refreshed = []
        for pair in self.known_pairs:
            if pair.lower() in self._static:
                continue
            try:
                refreshed.append(await self.refresh(pair))
            except Exception as e:
                logger.warning("Failed to refresh pool {}: {}", pair, e)
        return refreshed
