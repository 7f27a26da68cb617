"""EVM JSON-RPC ledger client wrapper."""
from typing import Any, Dict, List, Optional, Union

from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from exchange.abis import ABIS, PAIR_ABI, SWAP_EVENT_SIGNATURE
from models.errors import LedgerRejected, LedgerReverted
from models.schemas import ContractCall, SwapEvent


def _checksum_args(value: Any) -> Any:
    """Checksum every address-looking argument; web3 rejects lowercase ones."""
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return AsyncWeb3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_checksum_args(item) for item in value]
    return value


class LedgerClient:
    """Wrapper for an AsyncWeb3 connection with optional local signer."""

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str] = None,
        receipt_timeout: int = 120,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key) if private_key else None

    async def close(self):
        """Close the RPC provider session."""
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect:
            await disconnect()

    @property
    def signer_address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _function(self, call: ContractCall):
        contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(call.address),
            abi=ABIS[call.contract],
        )
        function = getattr(contract.functions, call.function_name)
        return function(*_checksum_args(call.args))

    async def read_contract(self, call: ContractCall) -> Any:
        """
        Call a view function.

        Args:
            call: Contract address, ABI name, function and arguments

        Returns:
            Decoded return value (ints stay ints)
        """
        return await self._function(call).call()

    async def write_contract(self, call: ContractCall) -> str:
        """
        Sign and send a state-changing call.

        Args:
            call: Contract call to submit

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        if not self.account:
            raise LedgerRejected("No signer configured for transaction submission")

        try:
            nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
            tx = await self._function(call).build_transaction(
                {
                    "from": self.account.address,
                    "nonce": nonce,
                    "value": call.value,
                }
            )
        except ContractLogicError as e:
            logger.error("Call {} would revert: {}", call.function_name, e)
            raise LedgerReverted(f"Transaction would revert: {e}") from e

        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info("Transaction sent: {} ({})", tx_hex, call.function_name)
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Wait for a transaction receipt."""
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.receipt_timeout,
        )
        return dict(receipt)

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self.w3.eth.get_block(block_number)
        return int(block["timestamp"])

    async def get_swap_events(
        self,
        pair: str,
        from_block: int = 0,
        to_block: Union[int, str] = "latest",
    ) -> List[SwapEvent]:
        """
        Fetch and decode Swap events emitted by a pair.

        Args:
            pair: Pair contract address
            from_block: First block to scan
            to_block: Last block to scan

        Returns:
            List of decoded swap events
        """
        address = AsyncWeb3.to_checksum_address(pair)
        contract = self.w3.eth.contract(address=address, abi=PAIR_ABI)
        topic = AsyncWeb3.to_hex(AsyncWeb3.keccak(text=SWAP_EVENT_SIGNATURE))

        logs = await self.w3.eth.get_logs(
            {
                "address": address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [topic],
            }
        )

        events = []
        for log in logs:
            decoded = contract.events.Swap().process_log(log)
            args = decoded["args"]
            events.append(
                SwapEvent(
                    block_number=decoded["blockNumber"],
                    amount0_in=args["amount0In"],
                    amount1_in=args["amount1In"],
                    amount0_out=args["amount0Out"],
                    amount1_out=args["amount1Out"],
                )
            )
        logger.debug("Found {} swap events for {}", len(events), pair)
        return events
