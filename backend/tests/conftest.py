"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.config import AppSettings, MediaSettings, MessagingSettings, reset_config, set_config
from app.main import app
from app.media.service import MediaStorageService
from app.messages.store import MessageStore


@pytest.fixture(autouse=True)
def chat_settings(tmp_path):
    """Run every test against in-memory databases and a temp upload dir.

    Also forgets all presence sessions so tests never see each other's
    connections.
    """
    MessageStore.reset_instance()
    MediaStorageService.reset_instance()
    settings = AppSettings(
        messaging=MessagingSettings(db_path=":memory:"),
        media=MediaSettings(upload_dir=str(tmp_path / "uploads"), db_path=":memory:"),
    )
    set_config(settings)
    app.state.presence.clear()

    yield settings

    app.state.presence.clear()
    MessageStore.reset_instance()
    MediaStorageService.reset_instance()
    reset_config()


@pytest.fixture
def store(chat_settings):
    """The process-wide MessageStore, backed by an in-memory database."""
    return MessageStore.get_instance(chat_settings.messaging.db_path)


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Used as a context manager so HTTP requests and WebSocket sessions share
    one event loop, which lets pushes triggered by a request reach a socket
    opened in the same test.
    """
    with TestClient(app) as client:
        yield client
