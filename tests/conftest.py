"""Shared fixtures: pool snapshots, a scripted completion backend and an in-memory ledger."""
import json
from typing import Any, Dict, List, Optional

import pytest

from models.schemas import CompletionResult, ContractCall, PoolSnapshot, SwapEvent

ETH = "0x" + "e" * 40
USDC = "0x" + "c" * 40
PAIR = "0x1234567890123456789012345678901234567890"
ROUTER = "0x" + "a" * 40
USER = "0x" + "b" * 40


class StubCompletion:
    """Completion backend that replays canned responses and records prompts."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        api_key: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
    ) -> CompletionResult:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_text": user_text,
                "api_key": api_key,
                "custom_endpoint": custom_endpoint,
            }
        )
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        text = response if isinstance(response, str) else json.dumps(response)
        return CompletionResult(text=text)


class FakeLedger:
    """In-memory ledger keyed by (address, function name)."""

    def __init__(
        self,
        reads: Optional[Dict[Any, Any]] = None,
        signer: Optional[str] = USER,
        receipt_status: Optional[Dict[str, int]] = None,
        fail_on: Optional[str] = None,
    ):
        self.reads = {
            (key[0].lower(), key[1]) if isinstance(key, tuple) else key: value
            for key, value in (reads or {}).items()
        }
        self.signer = signer
        self.receipt_status = receipt_status or {}
        self.fail_on = fail_on
        self.read_calls: List[ContractCall] = []
        self.writes: List[ContractCall] = []
        self.receipts_waited: List[str] = []
        self.swap_events: List[SwapEvent] = []
        self.block_timestamps: Dict[int, int] = {}
        self.timestamp_lookups = 0

    @property
    def signer_address(self) -> Optional[str]:
        return self.signer

    async def read_contract(self, call: ContractCall) -> Any:
        self.read_calls.append(call)
        key = (call.address.lower(), call.function_name)
        if key not in self.reads:
            raise RuntimeError(f"execution reverted: {call.function_name}")
        value = self.reads[key]
        return value(call) if callable(value) else value

    async def write_contract(self, call: ContractCall) -> str:
        if self.fail_on == call.function_name:
            raise RuntimeError("insufficient funds for gas")
        self.writes.append(call)
        return f"0x{len(self.writes):064x}"

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        self.receipts_waited.append(tx_hash)
        return {"transactionHash": tx_hash, "status": self.receipt_status.get(tx_hash, 1)}

    async def get_swap_events(self, pair: str, from_block: int = 0, to_block="latest") -> List[SwapEvent]:
        return list(self.swap_events)

    async def get_block_timestamp(self, block_number: int) -> int:
        self.timestamp_lookups += 1
        return self.block_timestamps[block_number]

    async def close(self):
        pass


@pytest.fixture
def eth_usdc_pool() -> PoolSnapshot:
    return PoolSnapshot(
        address=PAIR,
        token0=ETH,
        token1=USDC,
        token0_symbol="ETH",
        token1_symbol="USDC",
        reserve0=10 * 10 ** 18,
        reserve1=20_000 * 10 ** 6,
    )


@pytest.fixture
def empty_pool() -> PoolSnapshot:
    return PoolSnapshot(
        address=PAIR,
        token0=ETH,
        token1=USDC,
        token0_symbol="ETH",
        token1_symbol="USDC",
        reserve0=0,
        reserve1=0,
    )
