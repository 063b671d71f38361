"""Fixtures for end-to-end tests against the Quart app.

The app runs in-process through Quart's test client. Storage, the model
factory, embeddings and outbound HTTP are swapped for local fakes.
"""
import httpx
import pytest

from papertrail import main
from tests.e2e.support import USER_ID
from tests.fakes import FakeEmbeddingClient, FakeModel

PAGE_HTML = """
<html><head><title>Tide Pools</title></head>
<body><article><p>Tide pools hold anemones, crabs and sea stars.</p></article></body></html>
"""


def _web_handler(request: httpx.Request) -> httpx.Response:
    if str(request.url) == "https://example.org/tides":
        return httpx.Response(200, text=PAGE_HTML)
    return httpx.Response(404)


@pytest.fixture
def app_env(temp_db, storage, monkeypatch):
    """Wire the app module to temporary storage and fake providers."""
    for env_var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.delenv(env_var, raising=False)

    embeddings = FakeEmbeddingClient()
    monkeypatch.setattr(main, "storage", storage)
    monkeypatch.setattr(main, "embedding_client_factory", lambda api_key: embeddings)
    monkeypatch.setattr(main, "http_transport", httpx.MockTransport(_web_handler))
    return embeddings


@pytest.fixture
def client(app_env):
    return main.app.test_client()


@pytest.fixture
def headers():
    return {"X-User-Id": USER_ID}


@pytest.fixture
def fake_model(monkeypatch):
    """Install a scripted model for /api/chat and /api/generate."""
    model = FakeModel()
    requested = []

    def get_model(provider, model_name, api_key):
        requested.append((provider, model_name))
        return model

    monkeypatch.setattr(main, "get_model", get_model)
    monkeypatch.setattr("papertrail.generate.get_model", get_model)
    model.requested = requested
    return model

