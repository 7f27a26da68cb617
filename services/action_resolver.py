"""Natural-language instruction to structured action resolution."""
import json
import re
from typing import Any, Dict, Optional, Protocol

from loguru import logger

from models.errors import (
    InvalidFunction,
    InvalidParameters,
    MalformedModelResponse,
    MissingInput,
    MissingParameters,
    MissingPoolContext,
    UnknownToken,
    UserInstructionUnclear,
)
from models.schemas import (
    AddLiquidityAction,
    CompletionResult,
    PoolSnapshot,
    RemoveLiquidityAction,
    SwapAction,
)
from utils.units import canonical_amount, format_units, parse_amount

VALID_FUNCTIONS = ("swap", "addLiquidity", "removeLiquidity")

# Parameters holding token symbols, per function
TOKEN_PARAMETERS = {
    "swap": ("fromToken", "toToken"),
    "addLiquidity": ("token0", "token1"),
    "removeLiquidity": ("token0", "token1"),
}

# Fences wrapping the whole response; backticks inside the JSON are kept
_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?[ \t]*\n?|\n?[ \t]*```\s*$")
_BRACE_RE = re.compile(r"\{")


class CompletionBackend(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        api_key: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
    ) -> CompletionResult:
        ...


def build_system_prompt(pool: PoolSnapshot) -> str:
    """System prompt listing the callable functions and the live pool context."""
    human0 = format_units(pool.reserve0, pool.decimals0)
    human1 = format_units(pool.reserve1, pool.decimals1)
    return f"""You are a helpful assistant that converts natural language instructions into structured actions for a Uniswap V2 style decentralized exchange.
You have the following functions available:

1. swap(fromToken, toToken, amount)
   - fromToken: The token to swap from
   - toToken: The token to swap to
   - amount: The amount of fromToken to swap (e.g. "0.1", "100")

2. addLiquidity(token0, token1, amount0, amount1)
   - token0: The first token named by the user
   - token1: The second token named by the user
   - amount0: The amount of token0 (optional if amount1 is given)
   - amount1: The amount of token1 (optional if amount0 is given)
   Never guess a missing amount; leave it out and it will be derived from the pool reserves.

3. removeLiquidity(token0, token1, percent, amount0, amount1)
   - token0: The first token in the pair
   - token1: The second token in the pair
   - percent: The percentage of the user's liquidity to remove (e.g. "50", "100")
   - amount0: The amount of token0 the user wants back (only if no percent is given)
   - amount1: The amount of token1 the user wants back (only if no percent is given)
   Provide exactly one of percent, amount0 or amount1.

Current pool information (only these two tokens can be traded):
- Pool Address: {pool.address}
- Token0: {pool.token0_symbol} ({pool.token0}), {pool.decimals0} decimals
- Token1: {pool.token1_symbol} ({pool.token1}), {pool.decimals1} decimals
- Reserve0: {pool.reserve0} ({human0} {pool.token0_symbol})
- Reserve1: {pool.reserve1} ({human1} {pool.token1_symbol})

Use the exact token symbols {pool.token0_symbol} and {pool.token1_symbol}. If the user names a token that is not in this pool, return an error.
All amounts are human-readable decimal strings, not base units.

Respond with a single JSON object and nothing else, with the following structure:
{{
  "function": "swap" | "addLiquidity" | "removeLiquidity",
  "parameters": {{
    // the parameters of the selected function
  }}
}}

If the user instruction is unclear or cannot be mapped to one of these functions, return:
{{
  "error": "Explanation of the issue"
}}"""


def _first_object(text: str) -> Optional[Dict[str, Any]]:
    """First top-level JSON object embedded in ``text``, if any."""
    decoder = json.JSONDecoder()
    for match in _BRACE_RE.finditer(text):
        try:
            parsed, _ = decoder.raw_decode(text, match.start())
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Recover the JSON object from a completion that may carry fences or prose.

    Raises:
        MalformedModelResponse: when no JSON object can be recovered
    """
    stripped = _FENCE_RE.sub("", text or "").strip()
    try:
        parsed = json.loads(stripped)
    except ValueError:
        parsed = _first_object(stripped)
        if parsed is None:
            logger.error("No JSON object in model response: {}", (text or "")[:200])
            raise MalformedModelResponse(
                "Failed to parse LLM response",
                details={"rawResponse": (text or "")[:200]},
            )

    if not isinstance(parsed, dict):
        logger.error("Model response is not a JSON object: {}", (text or "")[:200])
        raise MalformedModelResponse(
            "Failed to parse LLM response",
            details={"rawResponse": (text or "")[:200]},
        )
    return parsed


class ActionResolver:
    """Turns a natural-language instruction into a validated action."""

    def __init__(self, completion: CompletionBackend):
        self.completion = completion

    async def resolve(
        self,
        instruction_text: Optional[str],
        pool: Optional[PoolSnapshot],
        api_key: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
    ):
        """
        Resolve an instruction against a pool snapshot.

        Args:
            instruction_text: e.g. "Swap 0.1 ETH for USDC"
            pool: Snapshot of the selected pool
            api_key: Optional per-request completion API key
            custom_endpoint: Optional custom completion endpoint (primary)

        Returns:
            SwapAction, AddLiquidityAction or RemoveLiquidityAction
        """
        if not instruction_text or not instruction_text.strip():
            raise MissingInput("Missing input")
        if pool is None:
            raise MissingPoolContext("Missing pool information")

        system_prompt = build_system_prompt(pool)
        result = await self.completion.complete(
            system_prompt,
            instruction_text.strip(),
            api_key=api_key,
            custom_endpoint=custom_endpoint,
        )
        logger.info(
            "Completion received from {} endpoint ({} envelope): {}",
            result.source,
            result.envelope,
            result.text[:100],
        )

        parsed = extract_json_object(result.text)
        action = self.validate(parsed, pool)
        logger.info("Resolved instruction to action: {}", action.describe())
        return action

    def validate(self, parsed: Dict[str, Any], pool: PoolSnapshot):
        """Semantic validation of a parsed model response."""
        if parsed.get("error"):
            logger.info("Model could not map instruction: {}", parsed["error"])
            raise UserInstructionUnclear(str(parsed["error"]))

        function = parsed.get("function")
        if function not in VALID_FUNCTIONS:
            if not function:
                raise InvalidFunction("Missing function in response")
            raise InvalidFunction(f"Invalid function: {function}")

        parameters = parsed.get("parameters")
        if not isinstance(parameters, dict):
            raise MissingParameters("Missing parameters in response")

        symbols = self._ground_symbols(function, parameters, pool)

        if function == "swap":
            return self._build_swap(parameters, symbols, pool)
        if function == "addLiquidity":
            return self._build_add_liquidity(parameters, symbols, pool)
        return self._build_remove_liquidity(parameters, symbols, pool)

    def _ground_symbols(
        self,
        function: str,
        parameters: Dict[str, Any],
        pool: PoolSnapshot,
    ) -> Dict[str, str]:
        """Map every symbol parameter onto the pool's own spelling."""
        grounded: Dict[str, str] = {}
        for key in TOKEN_PARAMETERS[function]:
            raw = parameters.get(key)
            if raw is None or not str(raw).strip():
                continue
            side = pool.side_of(str(raw))
            if side is None:
                raise UnknownToken(
                    f"Unknown token: {raw}. This pool only trades "
                    f"{pool.token0_symbol} and {pool.token1_symbol}"
                )
            grounded[key] = pool.symbol_of(side)

        for key in TOKEN_PARAMETERS[function]:
            if key not in grounded:
                raise MissingParameters(f"Missing parameter: {key}")

        first, second = (grounded[key] for key in TOKEN_PARAMETERS[function])
        if first == second:
            raise InvalidParameters(f"Both tokens resolve to {first}; expected two different tokens")
        return grounded

    @staticmethod
    def _amount(parameters: Dict[str, Any], key: str) -> Optional[str]:
        raw = parameters.get(key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return None
        amount = parse_amount(raw)
        if amount is None or amount <= 0:
            raise InvalidParameters(f"Invalid {key}: {raw}")
        return canonical_amount(amount)

    def _build_swap(self, parameters, symbols, pool) -> SwapAction:
        amount = self._amount(parameters, "amount")
        if amount is None:
            raise MissingParameters("Missing parameter: amount")
        return SwapAction(
            from_symbol=symbols["fromToken"],
            to_symbol=symbols["toToken"],
            human_amount=amount,
            pool=pool,
        )

    def _build_add_liquidity(self, parameters, symbols, pool) -> AddLiquidityAction:
        amount0 = self._amount(parameters, "amount0")
        amount1 = self._amount(parameters, "amount1")
        if amount0 is None and amount1 is None:
            raise MissingParameters("Missing parameter: amount0 or amount1")
        return AddLiquidityAction(
            symbol0=symbols["token0"],
            symbol1=symbols["token1"],
            human_amount0=amount0,
            human_amount1=amount1,
            pool=pool,
        )

    def _build_remove_liquidity(self, parameters, symbols, pool) -> RemoveLiquidityAction:
        percent = self._amount(parameters, "percent")
        amount0 = self._amount(parameters, "amount0")
        amount1 = self._amount(parameters, "amount1")

        signals = [name for name, value in
                   (("percent", percent), ("amount0", amount0), ("amount1", amount1))
                   if value is not None]
        if not signals:
            raise MissingParameters("Missing parameter: percent, amount0 or amount1")
        if len(signals) > 1:
            logger.info("Multiple withdrawal signals {}; using {}", signals, signals[0])

        if percent is not None:
            if parse_amount(percent) > 100:
                raise InvalidParameters(f"Invalid percent: {percent}. Must be between 0 and 100")
            return RemoveLiquidityAction(
                symbol0=symbols["token0"],
                symbol1=symbols["token1"],
                percent=percent,
                pool=pool,
            )
        if amount0 is not None:
            return RemoveLiquidityAction(
                symbol0=symbols["token0"],
                symbol1=symbols["token1"],
                human_amount0=amount0,
                pool=pool,
            )
        return RemoveLiquidityAction(
            symbol0=symbols["token0"],
            symbol1=symbols["token1"],
            human_amount1=amount1,
            pool=pool,
        )
