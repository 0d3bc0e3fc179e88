"""
Idea Documents API - FastAPI Backend
Main application entry point with health check and API routing.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import resolve_credit_mode, settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    auth,
    ideas,
    documents,
    billing,
    export,
)
from services.errors import DomainError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Idea Documents API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    mode = resolve_credit_mode()
    if mode.local_storage_mode:
        print("💾 Local storage mode: credits are not charged.")
    elif mode.local_dev_mode:
        print(f"🧪 Local dev mode: cache-only balances seeded with {mode.local_dev_credits} credits.")
    elif not mode.credit_system_enabled:
        print("🆓 Credit system disabled: generation is free.")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Idea Documents API",
    description="Generate, version and export product documents for ideas, paid with credits",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(_request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(ideas.router, prefix="/ideas", tags=["Ideas"])
app.include_router(documents.router, prefix="/documents", tags=["Documents"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(export.router, prefix="/export", tags=["Export"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Idea Documents API",
        "version": "0.1.0",
        "status": "running"
    }
