"""AMM Assistant - natural-language trading against Uniswap-V2-style pools."""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from config import load_config
from utils.logging import setup_logging
from services.action_router import router as action_router
from services.pool_router import router as pool_router
from services.action_resolver import ActionResolver
from services.action_executor import ActionExecutor
from services.pool_catalog import PoolCatalog
from services.swap_history import SwapHistoryService
from services.trade_manager import TradeManager
from exchange.completion_client import CompletionClient
from exchange.ledger_client import LedgerClient

VERSION = "0.1.0"


async def _pool_refresher(app: FastAPI) -> None:
    """Background task to keep on-chain pool snapshots current."""
    config = getattr(app.state, "config", {})
    catalog = getattr(app.state, "catalog", None)

    if not catalog or not catalog.known_pairs:
        logger.warning("Pool refresher disabled: no known on-chain pairs")
        return

    refresh_interval = config.get("pools", {}).get("refresh_interval", 30)

    while True:
        try:
            refreshed = await catalog.refresh_all()
            logger.debug("Refreshed {} pool snapshot(s)", len(refreshed))
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.warning("Pool refresher error: {}", exc)

        await asyncio.sleep(refresh_interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting AMM Assistant...")

    # Start background pool refresh
    app.state.refresh_task = asyncio.create_task(_pool_refresher(app))

    yield

    # Shutdown
    logger.info("Shutting down AMM Assistant...")

    # Stop background pool refresh
    refresh_task = getattr(app.state, "refresh_task", None)
    if refresh_task:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass

    # Close clients
    if hasattr(app.state, "completion"):
        await app.state.completion.close()
    if hasattr(app.state, "ledger"):
        await app.state.ledger.close()


def create_app(config: Optional[Dict[str, Any]] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    # Load configuration
    if config is None:
        config = load_config()

    # Setup logging
    log_config = config.get("logging", {})
    setup_logging(
        log_dir=log_config.get("dir", "./logs"),
        level=log_config.get("level", "INFO"),
    )

    logger.info("Configuration loaded")

    # Initialize completion client
    completion_config = config.get("completion", {})
    completion = CompletionClient(
        api_url=completion_config.get("api_url") or "https://api.openai.com/v1",
        api_key=completion_config.get("api_key") or None,
        model=completion_config.get("model", "gpt-4o"),
        temperature=float(completion_config.get("temperature", 0.3)),
        timeout=float(completion_config.get("timeout", 30)),
    )
    if not completion.api_key:
        logger.warning("No OpenAI API key configured; requests must supply apiKey or customEndpoint")
    logger.info("Completion client initialized")

    # Initialize ledger client
    rpc_config = config.get("rpc", {})
    ledger = LedgerClient(
        rpc_url=rpc_config.get("url", "http://127.0.0.1:8545"),
        private_key=config.get("signer", {}).get("private_key") or None,
        receipt_timeout=int(rpc_config.get("receipt_timeout", 120)),
    )
    logger.info("Ledger client initialized (signer: {})", ledger.signer_address or "none")

    # Initialize pool catalog
    contracts = config.get("contracts", {})
    pools_config = config.get("pools", {})
    catalog = PoolCatalog(
        ledger=ledger,
        factory_address=contracts.get("factory") or None,
        known_pairs=pools_config.get("known_pairs", []),
        static_pools=pools_config.get("static", []),
    )

    # Initialize resolver, executor and trade manager
    trading_config = config.get("trading", {})
    router_address = contracts.get("router") or ""
    if not router_address:
        logger.warning("Router address not configured; execution plans will be incomplete")
    resolver = ActionResolver(completion)
    executor = ActionExecutor(
        router_address=router_address,
        slippage_bps=int(trading_config.get("slippage_bps", 500)),
        deadline_seconds=int(trading_config.get("deadline_seconds", 1200)),
    )
    trade_manager = TradeManager(ledger=ledger, executor=executor, catalog=catalog)
    swap_history = SwapHistoryService(ledger)

    # Create FastAPI app
    app = FastAPI(
        title="AMM Assistant",
        description="Natural-language swaps and liquidity for Uniswap-V2-style pools",
        version=VERSION,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store state
    app.state.config = config
    app.state.completion = completion
    app.state.ledger = ledger
    app.state.catalog = catalog
    app.state.resolver = resolver
    app.state.executor = executor
    app.state.trade_manager = trade_manager
    app.state.swap_history = swap_history

    # Include routers
    app.include_router(action_router, tags=["actions"])
    app.include_router(pool_router, tags=["pools"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "amm-assistant",
            "version": VERSION,
        }

    logger.info("AMM Assistant initialized")

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    server = app.state.config.get("server", {})
    uvicorn.run(
        "main:app",
        host=server.get("host", "0.0.0.0"),
        port=int(server.get("port", 4201)),
        reload=True,
    )
