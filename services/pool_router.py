"""Pool data API endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger

from models.errors import AmmError
from models.schemas import CurvePoint
from services import reserve_math


router = APIRouter()


def _get_catalog(request: Request):
    """Get pool catalog from app state."""
    catalog = getattr(request.app.state, "catalog", None)
    if not catalog:
        raise HTTPException(status_code=500, detail="Pool catalog not initialized")
    return catalog


def _get_swap_history(request: Request):
    """Get swap history service from app state."""
    history = getattr(request.app.state, "swap_history", None)
    if not history:
        raise HTTPException(status_code=500, detail="Swap history not initialized")
    return history


def _error(message: str, status_code: int, details: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@router.get("/pair-address")
async def get_pair_address(
    request: Request,
    factory: Optional[str] = None,
    index: Optional[str] = None,
    token0: Optional[str] = None,
    token1: Optional[str] = None,
) -> Any:
    """
    Look up a pair address.

    With ``index`` the address comes from the configured known pairs and is
    returned bare (or null when out of range). With ``factory``, ``token0``
    and ``token1`` the factory is queried in both token orders.
    """
    catalog = _get_catalog(request)

    if index is not None:
        try:
            position = int(index)
        except ValueError:
            return _error("Invalid index parameter", 400)
        try:
            address = catalog.pair_by_index(position)
        except AmmError as e:
            return _error(e.message, e.status_code)
        if address:
            logger.info("Returning known pool address for index {}: {}", position, address)
        return JSONResponse(content=address)

    if factory and token0 and token1:
        logger.info(
            "Attempting to get pool address, factory: {}, token0: {}, token1: {}",
            factory,
            token0,
            token1,
        )
        try:
            address = await catalog.get_pair_address(token0, token1, factory=factory)
        except Exception as e:
            logger.error("Failed to get pool address: {}", e)
            return _error("Failed to get pool address", 500, str(e))
        return {"pairAddress": address}

    return _error(
        "Missing required parameters. Need either index or (factory, token0, token1)",
        400,
    )


@router.get("/pair-data")
async def get_pair_data(request: Request, pair: Optional[str] = None) -> Any:
    """Token addresses, symbols, decimals and reserves of a pair."""
    catalog = _get_catalog(request)
    if not pair:
        return _error("Missing required parameters", 400)

    logger.info("Attempting to get data for pool {}", pair)
    try:
        data = await catalog.fetch_pair_data(pair)
    except Exception as e:
        logger.error("Failed to retrieve pool details: {}", e)
        return _error("Failed to retrieve pool details", 500, str(e))
    return data.model_dump(by_alias=True)


@router.get("/swap-history")
async def get_swap_history(
    request: Request,
    pair: Optional[str] = None,
    days: int = 30,
) -> Any:
    """Daily swap volume and average price of a pair."""
    catalog = _get_catalog(request)
    history = _get_swap_history(request)

    if not pair:
        return _error("Missing pair address", 400)
    if days < 1:
        return _error("Invalid days parameter", 400)

    try:
        snapshot = catalog.snapshot(pair)
        if snapshot is None:
            snapshot = (await catalog.fetch_pair_data(pair)).to_snapshot(pair)
        result = await history.fetch(
            pair,
            days=days,
            decimals0=snapshot.decimals0,
            decimals1=snapshot.decimals1,
        )
    except Exception as e:
        logger.error("Failed to fetch swap history: {}", e)
        return _error("Failed to fetch swap history", 500, str(e))
    return result.model_dump(by_alias=True)


@router.get("/pools")
async def list_pools(request: Request) -> Dict[str, Any]:
    """Latest snapshots of every pool in the catalog."""
    catalog = _get_catalog(request)
    return {
        "pools": [pool.model_dump(mode="json", by_alias=True) for pool in catalog.pools()],
    }


@router.get("/reserves-curve")
async def get_reserves_curve(
    request: Request,
    pair: Optional[str] = None,
    points: int = 100,
) -> Any:
    """Points on the constant-product curve through a pool's current reserves."""
    catalog = _get_catalog(request)
    if not pair:
        return _error("Missing pair address", 400)
    if points < 2 or points > 1000:
        return _error("Invalid points parameter", 400)

    pool = catalog.snapshot(pair)
    if pool is None:
        return _error(f"Unknown pool: {pair}", 404)

    curve = reserve_math.curve_points(
        pool.reserve0,
        pool.reserve1,
        pool.decimals0,
        pool.decimals1,
        num_points=points,
    )
    current = None
    if curve:
        current = CurvePoint(
            x=pool.reserve0 / 10 ** pool.decimals0,
            y=pool.reserve1 / 10 ** pool.decimals1,
        ).model_dump()
    return {
        "pair": pool.address,
        "token0Symbol": pool.token0_symbol,
        "token1Symbol": pool.token1_symbol,
        "points": [CurvePoint(x=x, y=y).model_dump() for x, y in curve],
        "current": current,
    }
