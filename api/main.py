"""
Auction Billing API - Main Application.

FastAPI application with CORS enabled for frontend communication.
Clients and services are built from Settings when the app starts and closed
when it stops.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from config.settings import load_settings
from services.wiring import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = getattr(app.state, "services", None)
    owned = services is None
    if owned:
        settings = load_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        services = build_services(settings)
        app.state.services = services
    logger.info("Auction billing API %s started", __version__)
    try:
        yield
    finally:
        if owned:
            services.close()
            app.state.services = None


# Create FastAPI application
app = FastAPI(
    title="Auction Billing API",
    description="Invoices, payment collection and seller settlements for auctions",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS - Allow all origins for development
# TODO: Restrict origins once the admin frontend has a fixed domain
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "auction-billing-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Auction Billing API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import auctions, invoices, settlements, webhooks

app.include_router(invoices.router, prefix="/api/v1", tags=["Invoices"])
app.include_router(auctions.router, prefix="/api/v1", tags=["Auctions"])
app.include_router(settlements.router, prefix="/api/v1", tags=["Settlements"])
app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])
