"""
JobFeeds FastAPI application entry point.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.database.session import SessionLocal
from app.routes.feeds import router as feeds_router
from app.routes.health import router as health_router
from app.routes.import_route import router as import_router
from app.routes.ws import router as ws_router
from app.services.config_service import config_service
from app.services.import_orchestrator import ImportOrchestrator
from app.services.import_service import FeedFetcher
from app.services.notification_service import NotificationBroadcaster

# Request ID context variable
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


# Custom logging filter to add request_id
class RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s request_id=%(request_id)s",
)

# Handler-level filter so records propagated from child loggers get the field too
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIDFilter())


def create_app(
    session_factory: Optional[Callable[[], Session]] = None,
    fetcher: Optional[FeedFetcher] = None,
    fetch_backoff: float = 2.0,
) -> FastAPI:
    """
    Build the application.

    Args:
        session_factory: Session factory for background processing, defaults to SessionLocal
        fetcher: Feed fetcher, defaults to the HTTP fetcher
        fetch_backoff: Base delay between feed fetch retries

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("app.lifespan")
        broadcaster = NotificationBroadcaster()
        orchestrator = ImportOrchestrator(
            session_factory=session_factory or SessionLocal,
            broadcaster=broadcaster,
            fetcher=fetcher,
            fetch_backoff=fetch_backoff,
        )
        app.state.broadcaster = broadcaster
        app.state.orchestrator = orchestrator
        logger.info("Import orchestrator and broadcaster started")

        yield

        await orchestrator.shutdown(timeout=30)
        await broadcaster.close_all()
        logger.info("Import orchestrator and broadcaster stopped")

    app = FastAPI(
        title="JobFeeds",
        description="Job feed registry and import session tracking",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config_service.get_list("CORS_ORIGINS"),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)

        logger = logging.getLogger("app.request")
        logger.info(
            f"Request started method={request.method} url={str(request.url)} client_ip={request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        logger.info(f"Request completed status_code={response.status_code}")

        return response

    # Include routers
    app.include_router(health_router, tags=["health"])
    app.include_router(feeds_router, tags=["feeds"])
    app.include_router(import_router, tags=["import"])
    app.include_router(ws_router, tags=["realtime"])

    return app


app = create_app()
