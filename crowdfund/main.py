"""Crowdfund Proposals API - Main Application"""
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from crowdfund.config import Settings, get_settings
from crowdfund.api.errors import register_error_handlers
from crowdfund.api.v1.router import api_router
from crowdfund.models.database import init_db, close_db, async_session_factory, engine as db_engine
from crowdfund.services.engine import ProposalEngine
from crowdfund.services.journal import ProposalJournal
from crowdfund.services.registry import ProposalRegistry
from crowdfund.services.transfers import build_transfer_gateway

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()


async def start_engine(
    config: Settings,
    session_factory: async_sessionmaker = async_session_factory,
    bind: AsyncEngine = db_engine,
) -> ProposalEngine:
    """Build the proposal engine from settings and restore it from the journal"""
    journal = None
    if config.journal_enabled:
        await init_db(bind)
        journal = ProposalJournal(session_factory)
        logger.info("Database initialized")
    else:
        logger.warning("Journal disabled - proposals are kept in memory only")

    gateway = build_transfer_gateway(config)
    await gateway.connect()

    engine = ProposalEngine(
        ProposalRegistry(cooldown_seconds=config.cooldown_seconds),
        gateway,
        journal=journal,
        allow_funding_reopen=config.allow_funding_reopen,
    )
    restored = await engine.restore()
    logger.info("Proposal engine ready", proposals=restored)
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Crowdfund API", version=settings.app_version)

    engine = await start_engine(settings)
    app.state.engine = engine

    yield

    # Cleanup
    await engine.gateway.disconnect()
    if settings.journal_enabled:
        await close_db()
    logger.info("Crowdfund API shutdown complete")


def create_app() -> FastAPI:
    """Create FastAPI application"""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="API for crowdfunding proposals and profit distribution",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "cooldown_seconds": settings.cooldown_seconds,
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "crowdfund.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
