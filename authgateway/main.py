"""
FastAPI Auth Gateway Application Factory
========================================

Entry point of the authentication gateway that fronts the backend API.

Architecture:
    Browser → Auth Gateway (this service) → Identity Providers
                                          → Backend API (config, token checks)

Routers:
    - /api/login, /api/login/token    : Code-flow and bearer-token login
    - /api/refresh, /api/logout       : Session rotation and teardown
    - /api/userinfo                   : Display username of the session
    - /api/authproviders/{name}/test  : Provider configuration report
    - /health                         : Health check endpoint

Environment Variables Required:
    - API_URL: Backend API base URL (e.g., "https://api.example.com:3443")
    - BASE_UI_URL: Externally visible UI URL (redirect URI base)
    - TLS_CERT_FILE / TLS_KEY_FILE: Serve HTTPS and mark cookies Secure
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn authgateway.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        python -m authgateway.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.routes import auth_router
from .config import Settings, get_settings, validate_configuration
from .errors import AuthGatewayError
from .providers.registry import ProviderRegistry
from .proxy.middleware import BearerTokenMiddleware

SERVICE_NAME = "authgateway"
SERVICE_VERSION = "1.0.0"

logger = logging.getLogger("authgateway.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Log configuration diagnostics

    The gateway holds no long-lived upstream connections, so shutdown only
    logs.
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error("Configuration error: %s", error)
    for warning in report["warnings"]:
        logger.warning("Configuration warning: %s", warning)

    logger.info(
        "Starting auth gateway",
        extra={
            "api_url": settings.api_url_str,
            "base_ui_url": settings.base_ui_url_str,
            "tls": settings.tls_enabled,
            "static_providers": bool(settings.AUTH_PROVIDERS_FILE),
        },
    )

    yield

    logger.info("Auth gateway shutdown complete")


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ProviderRegistry] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS and bearer token middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use; loaded from the environment when omitted
        registry: Provider registry; built from ``settings`` when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    registry = registry or ProviderRegistry(settings)

    app = FastAPI(
        title="Auth Gateway",
        description="Login, session and identity resolution across identity providers",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.registry = registry

    # Registered before CORS so CORS stays the outermost layer
    app.add_middleware(BearerTokenMiddleware, settings=settings)

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router, prefix="/api", tags=["Authentication"])

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Service health information
        """
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION
        }

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "login": "/api/login",
                "refresh": "/api/refresh",
                "userinfo": "/api/userinfo",
                "logout": "/api/logout",
            }
        }

    @app.exception_handler(AuthGatewayError)
    async def gateway_error_handler(request: Request, exc: AuthGatewayError) -> JSONResponse:
        logger.warning(
            "Request failed: %s",
            exc.message,
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed request bodies are a plain 400."""
        return JSONResponse(
            status_code=400,
            content={"error": "malformed request", "detail": jsonable_encoder(exc.errors())},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point: python -m authgateway.main
    """
    settings = get_settings()

    ssl_options: Dict[str, Any] = {}
    if settings.tls_enabled:
        ssl_options = {"ssl_certfile": settings.TLS_CERT_FILE, "ssl_keyfile": settings.TLS_KEY_FILE}

    uvicorn.run(
        "authgateway.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        **ssl_options
    )
