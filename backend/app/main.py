"""Direct Messaging Backend Application.

This is the main entry point for the chat backend service: one-to-one
messaging with near-real-time delivery, online presence and seen receipts.

Modules:
    - messages: DuckDB message store and the history/send/mark-seen API
    - presence: volatile presence registry and the push WebSocket
    - delivery: routes new-message / messages-seen / typing events to live sessions
    - media: stand-in object storage for message attachments
    - auth: extraction of the authenticated user identity
    - client: Python client library (reconciler, send queue, transports)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_config
from app.delivery.service import DeliveryRouter
from app.media.router import get_media_service
from app.media.router import router as media_router
from app.media.service import MediaStorageService
from app.messages.router import get_message_store
from app.messages.router import router as messages_router
from app.messages.store import MessageStore
from app.presence.registry import PresenceRegistry
from app.presence.router import router as presence_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "websockets",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = get_message_store()
    get_media_service()
    logger.info(
        f"Message store ready ({store.count()} messages); "
        f"serving on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown: forget live sessions, close durable stores.
    app.state.presence.clear()
    MessageStore.reset_instance()
    MediaStorageService.reset_instance()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application and its process-owned presence state."""
    application = FastAPI(
        title="Direct Messaging API",
        description="One-to-one chat with presence, live delivery and seen receipts",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=get_config().server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Volatile, rebuilt from scratch on every process start.
    application.state.presence = PresenceRegistry()
    application.state.delivery = DeliveryRouter(application.state.presence)

    application.include_router(messages_router)
    application.include_router(presence_router)
    application.include_router(media_router)

    @application.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return application


app = create_app()
