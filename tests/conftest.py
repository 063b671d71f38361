"""Shared fixtures: temporary database and storage, fake providers."""
import pytest

from papertrail import db
from papertrail.storage import ObjectStorage
from tests.fakes import FakeEmbeddingClient


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the store at a fresh sqlite file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    db.init_database()
    return db


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(
        root=tmp_path / "storage",
        bucket="sources",
        public_base_url="http://files.test",
    )


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingClient()


@pytest.fixture
def no_keys():
    return lambda user_id, provider: None


@pytest.fixture
def openai_key():
    return lambda user_id, provider: "sk-test" if provider == "openai" else None
