"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from api.core.config import Settings, get_settings
from api.core.dependencies import (
    clear_transfer_runtime,
    close_discord_api,
    get_discord_api,
    init_transfer_runtime,
)
from api.core.logging import setup_logging
from api.routers import auth_router, guilds_router, transfers_router
from bot.client import TransferBot
from shared.database import DatabaseManager, PoolConfig, get_database_manager, init_database_manager
from shared.migrations.runner import MigrationRunner
from shared.repositories import CredentialRepository, TransferRepository
from shared.services import DiscordGuildGateway, TransferOrchestrator, TransferService

logger = logging.getLogger(__name__)

SERVICE_NAME = "guildmover"
VERSION = "1.0.0"

# Track server start time
_start_time: float = 0.0
_heartbeat_task: asyncio.Task | None = None
_pool_heartbeat_task: asyncio.Task | None = None
_bot_task: asyncio.Task | None = None
_bot: TransferBot | None = None


async def _heartbeat(interval: int = 300) -> None:
    """Periodic heartbeat: log uptime, DB status and bot readiness"""
    while True:
        await asyncio.sleep(interval)
        uptime = int(time.time() - _start_time)
        db_manager = get_database_manager()
        db_ok = db_manager is not None and await db_manager.check_health()
        bot_ok = _bot is not None and _bot.is_ready()
        logger.info(f"Heartbeat: uptime={uptime}s, db={db_ok}, bot={bot_ok}")


async def _pool_heartbeat_loop() -> None:
    """Periodically ping the DB pool to keep idle connections alive.

    On failure, backs off to avoid flooding logs and wasting connections.
    """
    interval = 15
    fail_count = 0
    while True:
        await asyncio.sleep(interval)
        try:
            db_manager = get_database_manager()
            if db_manager is not None and db_manager._pool is not None:
                async with db_manager._pool.acquire(timeout=30.0) as conn:
                    await conn.fetchval("SELECT 1")
                if fail_count > 0:
                    logger.info(f"Pool heartbeat recovered after {fail_count} failures")
                fail_count = 0
                interval = 15
        except asyncio.CancelledError:
            break
        except Exception as e:
            fail_count += 1
            if fail_count <= 3:
                logger.warning(f"Pool heartbeat failed ({fail_count}): {type(e).__name__}: {e}")
            elif fail_count == 4:
                logger.warning(
                    f"Pool heartbeat still failing ({fail_count}x), suppressing until recovery"
                )
            # Backoff: 15s → 30s → 60s → 120s max
            interval = min(15 * (2 ** min(fail_count - 1, 3)), 120)


async def _connect_database(settings: Settings) -> DatabaseManager:
    """Connect the pool and apply pending migrations before serving requests."""
    db_manager = init_database_manager(
        settings.database_url, PoolConfig(ssl=settings.database_ssl or None)
    )
    await asyncio.wait_for(db_manager.connect(), timeout=30)
    logger.info("Database connected")

    await MigrationRunner(db_manager.pool).run_pending()
    return db_manager


async def _run_bot(bot: TransferBot, token: str) -> None:
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception(f"Discord bot stopped: {type(e).__name__}: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time, _heartbeat_task, _pool_heartbeat_task, _bot_task, _bot
    _start_time = time.time()

    settings = get_settings()

    # Startup
    logger.info(f"Starting {SERVICE_NAME} API server")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Frontend URL: {settings.frontend_url}")

    db_manager = await _connect_database(settings)
    pool = db_manager.pool

    # The bot, the gateway and the transfer runtime share this event loop
    _bot = TransferBot(settings)
    gateway = DiscordGuildGateway(_bot, settings.discord_bot_token)
    credentials = CredentialRepository(pool)
    transfers = TransferRepository(pool)
    orchestrator = TransferOrchestrator(
        credentials, transfers, gateway, delay=settings.transfer_delay_seconds
    )
    service = TransferService(credentials, transfers, gateway, orchestrator)
    init_transfer_runtime(gateway, service)

    _bot.transfer_service = service
    _bot.discord_api = get_discord_api()
    _bot_task = asyncio.create_task(_run_bot(_bot, settings.discord_bot_token), name="discord-bot")

    # Start heartbeat keep-alive task
    if settings.enable_keep_alive:
        _heartbeat_task = asyncio.create_task(_heartbeat(settings.keep_alive_interval))
        logger.info(f"Heartbeat started (interval={settings.keep_alive_interval}s)")

    _pool_heartbeat_task = asyncio.create_task(_pool_heartbeat_loop())

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME} API server")
    if _pool_heartbeat_task:
        _pool_heartbeat_task.cancel()
    if _heartbeat_task:
        _heartbeat_task.cancel()
    try:
        await service.shutdown()
        clear_transfer_runtime()
        if not _bot.is_closed():
            await _bot.close()
        if _bot_task:
            _bot_task.cancel()
        await gateway.close()
        await close_discord_api()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")
    finally:
        _bot = None


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings)

    app = FastAPI(
        title="Guildmover API",
        description="Move authorized Discord members between servers",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router.router)
    app.include_router(guilds_router.router)
    app.include_router(transfers_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": SERVICE_NAME, "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time),
        }

    @app.get("/status")
    async def status():
        """Readiness: DB health and bot connection"""
        db_manager = get_database_manager()
        db_ok = False
        if db_manager is not None and db_manager._pool is not None:
            db_ok = await db_manager.check_health()
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "uptime_seconds": int(time.time() - _start_time),
            "db_connected": db_ok,
            "bot_ready": _bot is not None and _bot.is_ready(),
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
