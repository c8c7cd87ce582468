"""Pytest configuration and fixtures."""

import logging
import os

import pytest

from shared.helper.HelperConfig import HelperConfig
from services.bootstrap import build_services, close_clients
from tests.fakes import OllamaChatBackend, OllamaEmbedBackend, make_clients

# applied at import time so modules reading the environment on import see it too
TEST_ENV = {
    "LOG_LEVEL": "debug",
    "API_SERVER_API_KEY": "test-key",
    "EMBED_ENGINE": "ollama",
    "EMBED_OLLAMA_BASE_URL": "http://embed.test",
    "EMBED_DIMENSIONS": "16",
    "EMBED_BATCH_DELAY": "0",
    "LLM_ENGINE": "ollama",
    "LLM_OLLAMA_BASE_URL": "http://llm.test",
    "RAG_ENGINE": "memory",
    "GRAPH_ENGINE": "memory",
    "BLOB_ENGINE": "local",
    "META_ENGINE": "sql",
    "META_SQL_URL": "sqlite:///:memory:",
    "ENTITY_BATCH_DELAY": "0",
    "TASK_RETRY_DELAY": "0",
    "TASK_WORKERS": "1",
}
os.environ.update(TEST_ENV)


@pytest.fixture
def helper_config(monkeypatch, tmp_path) -> HelperConfig:
    monkeypatch.setenv("BLOB_LOCAL_ROOT", str(tmp_path / "blobs"))
    return HelperConfig(logger=logging.getLogger("docintel.tests"))


@pytest.fixture
def embed_backend() -> OllamaEmbedBackend:
    return OllamaEmbedBackend()


@pytest.fixture
def chat_backend() -> OllamaChatBackend:
    return OllamaChatBackend()


@pytest.fixture
async def clients(helper_config, embed_backend, chat_backend):
    booted = await make_clients(helper_config, embed_backend=embed_backend, chat_backend=chat_backend)
    yield booted
    await close_clients(helper_config, booted)


@pytest.fixture
async def app_services(helper_config, clients):
    wired = build_services(helper_config, clients)
    wired.task_queue.start()
    yield wired
    await wired.task_queue.stop()
