"""
Main entry point for the Call Forward Service.

FastAPI application serving the admin API, with the FastAGI routing server
started alongside it.
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from callforward.agi.server import AGIServer
from callforward.auth.digest_authenticator import DigestAuthenticator
from callforward.config import get_settings
from callforward.handlers import admin_api
from callforward.handlers.call_forward_handler import CallForwardHandler
from callforward.models.api_models import HealthCheckResponse
from callforward.services.call_forward_store import CallForwardStore
from callforward.services.database_service import DatabaseService
from callforward.services.registry import Registry
from callforward.services.routing_resolver import RoutingResolver
from callforward.utils.logger import setup_logger

# Setup logging
logger = setup_logger()

# Global service instances
db_service: DatabaseService = None
agi_server: AGIServer = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    global db_service, agi_server

    logger.info("Starting Call Forward Service...")

    settings = get_settings()

    # Registry and database failures are fatal here
    registry = Registry.from_yaml(settings.registry_file)

    db_service = DatabaseService(settings.database_url, echo=settings.log_level == "DEBUG")
    await db_service.init()

    store = CallForwardStore(db_service=db_service, registry=registry)
    resolver = RoutingResolver(store=store, registry=registry)

    admin_api.init_handler(store, registry)

    authenticator = DigestAuthenticator(
        secret=settings.agi_digest_secret,
        secret_variable=settings.agi_digest_variable,
    )
    agi_server = AGIServer(
        host=settings.agi_host,
        port=settings.agi_port,
        authenticator=authenticator,
        routes={
            "call_forward": CallForwardHandler(
                resolver=resolver,
                registry=registry,
                result_variable=settings.agi_result_variable,
            ),
        },
        idle_timeout=settings.agi_idle_timeout,
    )
    await agi_server.start()

    logger.info("Call Forward Service started successfully")
    logger.info(f"Environment: {settings.environment}")

    yield

    logger.info("Call Forward Service shutting down...")

    if agi_server:
        await agi_server.stop()

    if db_service:
        await db_service.close()


app = FastAPI(
    title="Call Forward Service",
    version="1.0.0",
    description="Call forward management and FastAGI routing for Asterisk",
    lifespan=lifespan
)

app.include_router(admin_api.router)
admin_api.register_exception_handlers(app)


@app.get("/health")
async def health_check() -> HealthCheckResponse:
    """
    Health check endpoint for Docker/NGINX monitoring.

    Returns:
        HealthCheckResponse with service status
    """
    db_status = "ok" if db_service and await db_service.health_check() else "error"
    agi_status = "ok" if agi_server and agi_server.bound_port else "error"

    return HealthCheckResponse(
        status="ok" if db_status == "ok" and agi_status == "ok" else "error",
        database=db_status,
        agi_server=agi_status,
        timestamp=datetime.utcnow()
    )


def main():
    """Main entry point for running the service."""
    import uvicorn

    settings = get_settings()

    logger.info(f"Starting Call Forward Service on {settings.host}:{settings.port}")

    uvicorn.run(
        "callforward.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )


if __name__ == "__main__":
    main()
