import logging
import warnings
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codeprism.config import Settings, settings
from codeprism.core.errors import register_error_handlers
from codeprism.core.middleware import AccessLogMiddleware, RequestIDMiddleware
from codeprism.core.rate_limit import RateLimitMiddleware
from codeprism.routers import approver, vault, vault_share
from codeprism.services.document_store import SqlDocumentStore, get_document_store


def check_approver_token(config: Settings) -> None:
    """Refuse to run in production without an approver secret; warn elsewhere."""
    if config.approver_token:
        return
    if config.is_production:
        raise RuntimeError(
            "APPROVER_TOKEN must be set to a secure random value in production. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    warnings.warn(
        "APPROVER_TOKEN is not set; the approver surface is disabled.", stacklevel=2
    )


check_approver_token(settings)

logger = logging.getLogger("codeprism")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create document-store tables on startup if they don't exist."""
    store = get_document_store()
    if isinstance(store, SqlDocumentStore):
        await store.create_tables()
        logger.info("Document store tables verified/created")
    yield
    if isinstance(store, SqlDocumentStore):
        await store.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Middleware order: last added is outermost and runs first
# CORS outermost so all responses get CORS headers (including 429s)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id", "content-disposition"],
)

# Error handlers
register_error_handlers(app)

# Routers
app.include_router(vault_share.router)
app.include_router(vault.router)
app.include_router(approver.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "version": "0.1.0"}
