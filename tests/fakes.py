"""Scripted HTTP backends and client builders for tests.

The real Ollama clients are used throughout; only their transport is replaced by an
httpx.MockTransport that answers like an Ollama server would.
"""

import hashlib
import json
from collections.abc import Callable

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.blob.local.BlobClientLocal import BlobClientLocal
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.graph.memory.GraphClientMemory import GraphClientMemory
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.clients.meta.sql.MetaClientSql import MetaClientSql
from shared.clients.rag.memory.RAGClientMemory import RAGClientMemory
from shared.helper.HelperConfig import HelperConfig


def text_vector(text: str, dimensions: int) -> list[float]:
    """Hashed bag of words: identical texts give identical vectors, shared words raise the cosine."""
    vector = [0.0] * dimensions
    vector[0] = 0.001
    for word in text.lower().split():
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimensions
        vector[bucket] += 1.0
    return vector


class OllamaEmbedBackend:
    """Answers /api/embed requests with text_vector() embeddings."""

    def __init__(self, status_code: int = 200, dimensions: int | None = None) -> None:
        self.status_code = status_code
        # overrides the requested size, e.g. to provoke a dimension mismatch
        self.dimensions = dimensions
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text="Ollama is running")
        payload = json.loads(request.content)
        self.requests.append(payload)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "model not loaded"})
        dimensions = self.dimensions or payload["dimensions"]
        return httpx.Response(200, json={"embeddings": [text_vector(text, dimensions) for text in payload["input"]]})


Responder = Callable[[list[dict]], str]


class OllamaChatBackend:
    """Answers /api/chat requests from a list of scripted replies, then from a responder."""

    def __init__(self, replies: list[str] | None = None, responder: Responder | None = None, status_code: int = 200) -> None:
        self.replies = list(replies or [])
        self.responder = responder
        self.status_code = status_code
        self.requests: list[dict] = []

    @property
    def prompts(self) -> list[str]:
        return [payload["messages"][-1]["content"] for payload in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text="Ollama is running")
        payload = json.loads(request.content)
        self.requests.append(payload)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "overloaded"})
        if self.replies:
            content = self.replies.pop(0)
        elif self.responder is not None:
            content = self.responder(payload["messages"])
        else:
            content = "{}"
        return httpx.Response(200, json={"message": {"role": "assistant", "content": content}, "done": True})


def entity_responder(known: dict[str, str], relationships: list[dict] | None = None) -> Responder:
    """Reply to extraction prompts with every known entity whose name occurs in the prompt.

    Args:
        known (dict[str, str]): Entity name -> category.
        relationships (list[dict] | None): Raw relationships appended to every reply.
    """
    def respond(messages: list[dict]) -> str:
        prompt = messages[-1]["content"].lower()
        entities = [
            {"name": name, "category": category, "confidence": 0.9, "context": name}
            for name, category in known.items()
            if name.lower() in prompt
        ]
        return json.dumps({"entities": entities, "relationships": relationships or []})

    return respond


async def make_embed_client(helper_config: HelperConfig, backend: OllamaEmbedBackend | None = None) -> EmbedClientOllama:
    client = EmbedClientOllama(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(backend or OllamaEmbedBackend()))
    return client


async def make_llm_client(helper_config: HelperConfig, backend: OllamaChatBackend | None = None) -> LLMClientOllama:
    client = LLMClientOllama(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(backend or OllamaChatBackend()))
    return client


async def make_clients(
    helper_config: HelperConfig,
    embed_backend: OllamaEmbedBackend | None = None,
    chat_backend: OllamaChatBackend | None = None,
) -> dict[str, ClientInterface]:
    """A full, booted client set: scripted Ollama, in-memory vectors and graph, SQLite, local files."""
    clients: dict[str, ClientInterface] = {
        "embed": await make_embed_client(helper_config, embed_backend),
        "llm": await make_llm_client(helper_config, chat_backend),
        "rag": RAGClientMemory(helper_config=helper_config),
        "graph": GraphClientMemory(helper_config=helper_config),
        "blob": BlobClientLocal(helper_config=helper_config),
        "meta": MetaClientSql(helper_config=helper_config),
    }
    for client_type in ("rag", "graph", "blob", "meta"):
        await clients[client_type].boot()
    await clients["meta"].do_initialize()
    return clients
