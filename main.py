# Essential imports
import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from routers import orders, delivery_partners, realtime
from contextlib import asynccontextmanager

# Import all models for SQLAlchemy relationship resolution
import models  # This triggers the imports in models/__init__.py
from core.database import Base, SessionLocal, engine
from core.exceptions import OrderServiceError
from core.metrics import get_metrics_bytes, get_metrics_content_type

# Real-time fan-out: one registry, dispatcher and location store per process
from services.dispatcher import BroadcastDispatcher
from services.gateway import ConnectionGateway
from services.locations import LocationStore
from services.subscriptions import SubscriptionRegistry

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware.rate_limiter import limiter

# Logging imports
from core.logging_config import setup_logging, get_logger
from middleware import RequestIDMiddleware, get_request_id
from core.config import settings

# CORS imports
from fastapi.middleware.cors import CORSMiddleware

# Initialize logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)

registry = SubscriptionRegistry()
dispatcher = BroadcastDispatcher(registry)
locations = LocationStore()
gateway = ConnectionGateway(registry, dispatcher, locations, SessionLocal)


# Lifecycle events logging
@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    await dispatcher.start()
    logger.info("Application startup complete", extra={"event": "startup"})
    yield
    await dispatcher.stop()
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Quick Commerce Order Service",
    description="Order lifecycle and real-time tracking for a quick-commerce delivery platform",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.state.registry = registry
app.state.dispatcher = dispatcher
app.state.locations = locations
app.state.gateway = gateway


# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# HTTP Request Logging Middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log all HTTP requests with method, path, status code, and duration.
    """
    start_time = time.time()

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000  # milliseconds
    client_ip = request.client.host if request.client else "unknown"

    logger.info(
        f'{client_ip} - "{request.method} {request.url.path} HTTP/1.1" {response.status_code}',
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration, 2),
            "client_ip": client_ip
        }
    )

    return response


# Added last so it wraps the logging middleware and the id is bound first
app.add_middleware(RequestIDMiddleware)


# Health check
@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {
        "status": "Healthy",
        "dispatcher": "running" if dispatcher.running else "stopped",
        "connections": len(registry),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(content=get_metrics_bytes(), media_type=get_metrics_content_type())


# Business-rule failures raised by the services
@app.exception_handler(OrderServiceError)
async def order_service_exception_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch all unhandled exceptions, log them with the request context and
    answer with a generic 500.
    """
    # FastAPI handles these itself
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise exc

    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": get_request_id(request)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": "InternalError"}
    )


# Including routers
app.include_router(orders.router)
app.include_router(delivery_partners.router)
app.include_router(realtime.router)


# Add rate limiter to the app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
