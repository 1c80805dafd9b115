from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import sys
import structlog

from .config import settings
from . import database
from .utils.redis_client import redis_client
from .routes import health, rides
from .services.eco_service import EcoService
from .services.event_service import EventService
from .services.ride_service import RideService
from .services.ride_store import InMemoryRideStore, SqlAlchemyRideStore

# Configure structured logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)

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
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


async def build_store():
    if not settings.use_database:
        logger.info("Using in-memory ride store")
        return InMemoryRideStore()

    session_factory = database.init_engine(settings.database_url)
    await database.create_tables()
    logger.info("Using SQL ride store")
    return SqlAlchemyRideStore(session_factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Ride Engine")

    try:
        store = await build_store()
        events = EventService()

        if settings.redis_enabled:
            await redis_client.connect()
            events.subscribe(redis_client.publish_event)
            logger.info("Forwarding ride events to Redis")

        app.state.ride_service = RideService(store, events=events)
        app.state.eco_service = EcoService(store)

        yield

    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise
    finally:
        # Shutdown
        logger.info("Shutting down Ride Engine")
        ride_service = getattr(app.state, "ride_service", None)
        if ride_service is not None:
            await ride_service.shutdown()
        try:
            await redis_client.disconnect()
            await database.dispose_engine()
            logger.info("Disconnected from external services")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


# Create FastAPI app
app = FastAPI(
    title="Ride Engine",
    description="Ride lifecycle, pricing and live tracking service",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Middleware for request logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    # Correlation ID for tracing
    correlation_id = request.headers.get("x-correlation-id", "unknown")

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        correlation_id=correlation_id
    )

    response = await call_next(request)

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        correlation_id=correlation_id
    )

    return response


# Include routers
app.include_router(health.router)
app.include_router(rides.router)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "ride-engine",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": "/api/rides/health",
            "docs": "/docs",
            "redoc": "/redoc"
        }
    }


# Health check for Kubernetes
@app.get("/health")
async def simple_health():
    """Simple health check for load balancers"""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ride_engine.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
