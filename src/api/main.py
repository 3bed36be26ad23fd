"""FastAPI application entry point."""
import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import fidelity_card, health
from core.config import Settings, get_settings
from core.identity_cache import IdentityCache
from db.session import create_engine, create_session_factory, create_tables
from services.card_service import CardService
from services.email_service import EmailService, SmtpConfig
from services.registry_client import RegistryClient
from services.token_store import TokenStore
from services.verification_service import LinkBuilder, VerificationService
from tasks.cache_sync import sync_identity_cache
from tasks.token_cleanup import run_periodic_token_cleanup

logger = logging.getLogger(__name__)


async def init_state(
    app: FastAPI,
    settings: Settings,
    registry: RegistryClient | None = None,
) -> None:
    """
    Build the application components and store them on app.state.

    Args:
        app: Application to initialize.
        settings: Settings to build components from.
        registry: Registry client to use instead of one built from settings.
    """
    engine = create_engine(settings.database_url)
    await create_tables(engine)

    cache = IdentityCache(default_store=settings.default_store)
    tokens = TokenStore(settings.token_dir, retention=settings.token_retention)
    registry = registry or RegistryClient.from_settings(settings)
    emails = EmailService(
        SmtpConfig.from_settings(settings),
        link_expiry_minutes=settings.token_retention_minutes,
    )
    cards = CardService(brand=settings.smtp_sender_name)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.identity_cache = cache
    app.state.token_store = tokens
    app.state.registry_client = registry
    app.state.card_service = cards
    app.state.verification_service = VerificationService(
        cache=cache,
        registry=registry,
        tokens=tokens,
        emails=emails,
        cards=cards,
        links=LinkBuilder.from_settings(settings),
    )
    app.state.background_tasks = []
    logger.info(
        "Application initialized (registry_configured=%s, email_dry_run=%s, token_dir=%s)",
        registry.is_configured,
        settings.is_email_dry_run,
        settings.token_dir,
    )


async def close_state(app: FastAPI) -> None:
    """Cancel background tasks and release the components on app.state."""
    tasks: list[asyncio.Task] = app.state.background_tasks
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    tasks.clear()

    await app.state.registry_client.close()
    await app.state.engine.dispose()
    logger.info("Application shut down")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()
    await init_state(app, app_settings)

    # Startup: warm the identity cache without delaying readiness
    if app_settings.cache_sync_on_startup:
        app.state.background_tasks.append(
            asyncio.create_task(
                sync_identity_cache(app.state.identity_cache, app.state.registry_client),
                name="identity-cache-sync",
            ),
        )
    app.state.background_tasks.append(
        asyncio.create_task(
            run_periodic_token_cleanup(
                app.state.token_store, app_settings.token_sweep_interval_seconds,
            ),
            name="token-cleanup",
        ),
    )

    yield

    await close_state(app)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        # HSTS: enforce HTTPS for 1 year, including subdomains
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response


app_settings = get_settings()

logging.basicConfig(
    level=app_settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="Fidelity Card API",
    description="Loyalty card registration: email verification, member profiles and digital cards.",
    version="0.1.0",
    lifespan=lifespan,
)

# Security headers middleware (runs after CORS, adds headers to responses)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(fidelity_card.router)
