"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import os
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qs, urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.endpoints.lifecycle import router as lifecycle_router
from src.api.endpoints.payments import payments_api
from src.api.endpoints.underwriting import router as underwriting_router
from src.engine import UnderwritingEngine
from src.error_handler import ErrorHandler
from src.integrations.contracts.interfaces import PaymentLinkProvider, ProposalStore
from src.utils.config_loader import EngineConfig, load_engine_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Underwriting Engine API"
SERVICE_VERSION = "1.0.0"


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

def _should_use_real_integrations() -> bool:
    mode = os.getenv("INTEGRATIONS_MODE", "").strip().lower()
    if mode in {"real", "live"}:
        return True
    if mode in {"mock", "test"}:
        return False
    return bool(os.getenv("PAYMENT_LINK_API_URL"))


def build_store(config: EngineConfig) -> ProposalStore:
    # Use real Postgres when env is set, else the in-memory stub
    if os.getenv("DATABASE_URL") and os.getenv("USE_POSTGRES_PROPOSALS", "").lower() in ("1", "true", "yes"):
        from src.database.postgres_real import ProposalDB

        return ProposalDB(
            connection_string=os.environ["DATABASE_URL"],
            pool_timeout_seconds=config.store.pool_timeout_seconds,
        )

    from src.database.postgres import ProposalDB

    return ProposalDB(lock_timeout_seconds=config.store.lock_timeout_seconds)


def build_link_provider(config: EngineConfig) -> PaymentLinkProvider:
    if _should_use_real_integrations() and os.getenv("PAYMENT_LINK_API_URL"):
        from src.integrations.clients.real_http.payments import RealPaymentLinkClient

        return RealPaymentLinkClient(
            generate_path=config.payment_link.generate_path,
            timeout_seconds=config.payment_link.timeout_seconds,
        )

    from src.integrations.clients.mocks.payments import MockPaymentLinkProvider

    return MockPaymentLinkProvider()


def _log_database_target(store: ProposalStore) -> None:
    # Log sanitized DB target details (no credentials) for connectivity debugging.
    db_url = os.getenv("DATABASE_URL", "")
    if not db_url:
        logger.info("DATABASE_URL not set; using in-memory %s", type(store).__module__)
        return
    try:
        parsed = urlparse(db_url)
        query = parse_qs(parsed.query or "")
        logger.info(
            "DATABASE_URL target: scheme=%s host=%s port=%s db=%s sslmode=%s use_postgres=%s",
            parsed.scheme,
            parsed.hostname,
            parsed.port or 5432,
            (parsed.path or "").lstrip("/"),
            (query.get("sslmode") or [""])[0],
            os.getenv("USE_POSTGRES_PROPOSALS", ""),
        )
    except ValueError as e:
        logger.warning("Could not parse DATABASE_URL for startup logging: %s", e)


def create_app(
    store: Optional[ProposalStore] = None,
    link_provider: Optional[PaymentLinkProvider] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    config = config or load_engine_config()
    store = store or build_store(config)
    link_provider = link_provider or build_link_provider(config)

    app = FastAPI(
        title=SERVICE_NAME,
        description="Proposal lifecycle engine for the underwriting back office",
        version=SERVICE_VERSION,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = UnderwritingEngine(store, config, link_provider)
    ErrorHandler().register(app)

    app.include_router(underwriting_router)
    app.include_router(lifecycle_router)
    app.include_router(payments_api, prefix="/api/v1/payments", tags=["Payments"])

    # ========================================================================
    # ENDPOINTS
    # ========================================================================
    @app.get("/", tags=["Health"])
    async def root():
        """Health check endpoint."""
        return {"service": SERVICE_NAME, "status": "healthy", "version": SERVICE_VERSION, "timestamp": datetime.now().isoformat()}

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Detailed health check (store and payment link provider in use)."""
        return {
            "status": "healthy",
            "store": type(store).__module__,
            "payment_link_provider": type(link_provider).__name__,
            "timestamp": datetime.now().isoformat(),
        }

    # ========================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ========================================================================
    @app.on_event("startup")
    async def startup_event():
        """Initialize on startup"""
        logger.info("Starting %s...", SERVICE_NAME)
        _log_database_target(store)

        # Create database tables if they don't exist
        try:
            store.create_tables()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.error(f"Error initializing database: {str(e)}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info("Shutting down %s...", SERVICE_NAME)

    return app


app = create_app()
