"""
MaintainOps API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from maintenance.errors import MaintenanceError

settings = get_settings()
logger = structlog.get_logger()

ERROR_STATUS_CODES = {
    "not_found": 404,
    "invalid_transition": 409,
    "insufficient_stock": 409,
    "date_conflict": 409,
    "contract_not_active": 409,
    "invalid_part_line": 422,
    "invalid_contract_terms": 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("MaintainOps API starting up", version=settings.app_version)
    yield
    logger.info("MaintainOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Maintenance contract visit scheduling, execution and parts consumption",
    lifespan=lifespan,
)


@app.exception_handler(MaintenanceError)
async def maintenance_error_handler(request: Request, exc: MaintenanceError):
    """Translate engine errors into HTTP responses with a structured detail."""
    status_code = ERROR_STATUS_CODES.get(exc.code, 400)
    logger.info(
        "api.maintenance_error",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import contracts, parts, visits

app.include_router(contracts.router)
app.include_router(visits.router)
app.include_router(parts.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
