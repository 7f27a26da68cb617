"""Action API endpoints: resolve, quote, plan and execute."""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from models.errors import AmmError, InvalidParameters, MissingPoolContext
from models.schemas import (
    ExecuteActionRequest,
    PlanActionRequest,
    ResolveActionRequest,
    ResolveActionResponse,
    SwapQuote,
)
from services import reserve_math
from utils.units import canonical_amount, format_units, parse_amount, to_base_units


router = APIRouter()


def _get_state(request: Request, name: str):
    """Get a service from app state."""
    service = getattr(request.app.state, name, None)
    if not service:
        raise HTTPException(status_code=500, detail=f"{name} not initialized")
    return service


def _failure(error: AmmError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response())


def _parse_body(model, payload: Optional[Dict[str, Any]]):
    """
    Validate a request body inside the handler.

    Malformed pools map to MissingPoolContext and any other invalid field to
    InvalidParameters, so clients get the usual failure body instead of a 422.
    """
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in e.errors()
        ]
        first = errors[0]
        if first["loc"].split(".")[0] == "pool":
            raise MissingPoolContext(
                f"Invalid pool information: {first['loc']} {first['msg']}",
                details={"errors": errors},
            ) from e
        raise InvalidParameters(
            f"Invalid request field {first['loc']}: {first['msg']}",
            details={"errors": errors},
        ) from e


def _server_error(context: str, error: Exception) -> JSONResponse:
    logger.exception("{}: {}", context, error)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Server error", "details": str(error)},
    )


@router.post("/resolve-action")
async def resolve_action(request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
    """
    Translate a natural-language instruction into a structured action.

    Expected payload:
    {
        "input": "Swap 0.1 ETH for USDC",
        "pool": {"address": "0x...", "token0Symbol": "ETH", ...},
        "apiKey": "sk-..."  (optional),
        "customEndpoint": "https://..."  (optional)
    }
    """
    resolver = _get_state(request, "resolver")
    try:
        body = _parse_body(ResolveActionRequest, payload)
    except AmmError as e:
        logger.warning("Resolve request rejected ({}): {}", e.kind, e.message)
        return _failure(e)

    logger.info(
        "Resolve request: input={} pool={} apiKey={} customEndpoint={}",
        "yes" if body.input else "no",
        body.pool.address if body.pool else "-",
        "custom" if body.api_key else "default",
        body.custom_endpoint or "-",
    )

    try:
        action = await resolver.resolve(
            body.input,
            body.pool,
            api_key=body.api_key,
            custom_endpoint=body.custom_endpoint,
        )
    except AmmError as e:
        logger.warning("Resolve failed ({}): {}", e.kind, e.message)
        return _failure(e)
    except Exception as e:
        return _server_error("Error processing natural language request", e)

    response = ResolveActionResponse(success=True, action=action, description=action.describe())
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/plan-action")
async def plan_action(request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
    """Build approvals and the router call for a resolved action."""
    executor = _get_state(request, "executor")
    try:
        body = _parse_body(PlanActionRequest, payload)
        plan = executor.plan(
            body.action,
            body.pool,
            body.user_address,
            allowances=body.allowances,
            lp_balance=body.lp_balance,
            total_supply=body.total_supply,
            slippage_bps=body.slippage_bps,
        )
    except AmmError as e:
        logger.warning("Planning failed ({}): {}", e.kind, e.message)
        return _failure(e)
    except Exception as e:
        return _server_error("Error planning action", e)

    return {"success": True, "plan": plan.model_dump(mode="json", by_alias=True)}


@router.post("/execute-action")
async def execute_action(request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
    """Plan and submit an action with the server-side signer."""
    trade_manager = _get_state(request, "trade_manager")
    catalog = _get_state(request, "catalog")

    try:
        body = _parse_body(ExecuteActionRequest, payload)
    except AmmError as e:
        logger.warning("Execute request rejected ({}): {}", e.kind, e.message)
        return _failure(e)

    pool = body.pool
    if pool is None:
        return _failure(MissingPoolContext("Missing pool information"))
    # Prefer the catalog's latest snapshot for known pools
    pool = catalog.snapshot(pool.address) or pool

    try:
        result = await trade_manager.execute(body.action, pool, body.slippage_bps)
    except AmmError as e:
        logger.error("Execution failed ({}): {}", e.kind, e.message)
        content = e.to_response()
        if e.details.get("txHashes"):
            content["txHashes"] = e.details["txHashes"]
        return JSONResponse(status_code=e.status_code, content=content)
    except Exception as e:
        return _server_error("Error executing action", e)

    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/quote")
async def quote(
    request: Request,
    pair: str,
    from_symbol: str = Query(..., alias="fromSymbol"),
    amount: str = Query(...),
    slippage_bps: Optional[int] = Query(None, alias="slippageBps", ge=0, le=10_000),
) -> Dict[str, Any]:
    """Quote a swap against the catalog's latest snapshot of ``pair``."""
    catalog = _get_state(request, "catalog")
    executor = _get_state(request, "executor")

    pool = catalog.snapshot(pair)
    if pool is None:
        raise HTTPException(status_code=404, detail=f"Unknown pool: {pair}")

    side_in = pool.side_of(from_symbol)
    if side_in is None:
        raise HTTPException(status_code=400, detail=f"Unknown token: {from_symbol}")
    side_out = 1 - side_in

    human_amount = parse_amount(amount)
    if human_amount is None or human_amount <= 0:
        raise HTTPException(status_code=400, detail=str(InvalidParameters(f"Invalid amount: {amount}")))

    tolerance = executor.slippage_bps if slippage_bps is None else slippage_bps
    amount_in = to_base_units(human_amount, pool.decimals_of(side_in))
    reserve_in, reserve_out = pool.reserve_of(side_in), pool.reserve_of(side_out)
    amount_out = reserve_math.quote_output(amount_in, reserve_in, reserve_out, pool.fee_rate_bps)
    min_out = reserve_math.apply_slippage(amount_out, tolerance, "min")
    if amount_in > 0:
        min_out = max(min_out, 1)
    impact = reserve_math.price_impact(amount_in, reserve_in, reserve_out, pool.fee_rate_bps)

    decimals_in, decimals_out = pool.decimals_of(side_in), pool.decimals_of(side_out)
    human_out = Decimal(format_units(amount_out, decimals_out))
    execution_price = human_out / human_amount if human_amount else Decimal(0)

    result = SwapQuote(
        from_symbol=pool.symbol_of(side_in),
        to_symbol=pool.symbol_of(side_out),
        amount_in=canonical_amount(human_amount),
        amount_out=format_units(amount_out, decimals_out),
        min_amount_out=format_units(min_out, decimals_out),
        price_impact=canonical_amount((impact * 100).quantize(Decimal("0.01"))),
        spot_price=canonical_amount(
            reserve_math.spot_price(reserve_in, reserve_out, decimals_in, decimals_out).quantize(
                Decimal("0.00000001")
            )
        ),
        execution_price=canonical_amount(execution_price.quantize(Decimal("0.00000001"))),
        slippage_bps=tolerance,
    )
    return result.model_dump(by_alias=True)
