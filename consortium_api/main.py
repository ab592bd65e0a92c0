"""
Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from consortium_api.db import initialize_database
from consortium_api.errors import DealError
from consortium_api.routers import admin, bids, consortium, kyc, providers, requests, users
from consortium_api.middleware import PerformanceMiddleware
from consortium_api.cache import config_cache
import logging

logger = logging.getLogger("consortium_api")

app = FastAPI(
    title="Consortium Insurance API",
    description="Coverage requests, provider bids and consortium finalization",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add performance middleware (innermost - executes first)
app.add_middleware(PerformanceMiddleware)

# Add CORS middleware (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DealError)
async def deal_error_handler(request: Request, exc: DealError):
    """Render engine errors with their stable kind and status code."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info(
        f"Request rejected | request_id={request_id} | path={request.url.path} | "
        f"error={exc.kind} | message={exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize database and warm up caches on startup."""
    logger.info("Starting Consortium Insurance API...")

    initialize_database()
    logger.info("Database initialized")

    config_cache.get_policy()
    logger.info(f"Policy cache warmed up: default currency {config_cache.default_currency}, "
                f"{len(config_cache.get_seed_users())} seed users")

    logger.info("Startup complete")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Consortium Insurance API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# Include all routers
app.include_router(users.router, prefix="/v1", tags=["users"])
app.include_router(kyc.router, prefix="/v1", tags=["kyc"])
app.include_router(requests.router, prefix="/v1", tags=["requests"])
app.include_router(bids.router, prefix="/v1", tags=["bids"])
app.include_router(consortium.router, prefix="/v1", tags=["consortium"])
app.include_router(providers.router, prefix="/v1", tags=["providers"])
app.include_router(admin.router, prefix="/v1", tags=["admin"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
