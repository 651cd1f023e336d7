"""
Shared fakes for the three external capabilities of the query chain:
the embedding model, the Qdrant client and the generation model.

Run the suite with:
  pytest -q
"""

import hashlib
import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from stemrag.context import ContextBuilder
from stemrag.embedding import EmbeddingService
from stemrag.rag import Resources
from stemrag.retrieval import SearchResult, VectorIndexClient


class FakeEmbeddingBackend:
    """Deterministic 8-dimensional vectors derived from a hash of the text."""

    model_name = "fake-embedder"
    dimension = 8

    def __init__(self) -> None:
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 for b in digest[: self.dimension]]


class FakeQdrantClient:
    """Answers query_points() from a fixed list of points."""

    def __init__(self, points=None, error: Exception = None) -> None:
        self.points = list(points or [])
        self.error = error
        self.queries: List[Dict[str, Any]] = []
        self.closed = False

    def query_points(self, collection_name, query, limit, query_filter=None, with_payload=True):
        self.queries.append({
            "collection_name": collection_name,
            "query": query,
            "limit": limit,
            "query_filter": query_filter,
        })
        if self.error is not None:
            raise self.error
        ranked = sorted(self.points, key=lambda p: p.score, reverse=True)
        return SimpleNamespace(points=ranked[:limit])

    def close(self) -> None:
        self.closed = True


class FakeGenerator:
    """Records every prompt and answers with a fixed string."""

    model_name = "fake-llm"

    def __init__(self, answer: str = "  A hash table maps keys to buckets.  ", error: Exception = None) -> None:
        self.answer = answer
        self.error = error
        self.prompts: List[str] = []
        self.max_tokens: List[int] = []

    def generate(self, prompt: str, max_tokens: int) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        if self.error is not None:
            raise self.error
        return self.answer


def point(id, score, payload):
    return SimpleNamespace(id=id, score=score, payload=payload)


def stringified(content: str) -> str:
    """A payload value stored as JSON-stringified JSON."""
    return json.dumps({"content": content})


@pytest.fixture
def five_points():
    return [
        point(1, 0.91, {"text": stringified("Hash tables store key/value pairs.")}),
        point(2, 0.85, {"text": stringified("Lookups are O(1) on average.")}),
        point(3, 0.72, {"text": stringified("Collisions are resolved by chaining.")}),
        point(4, 0.64, {"text": stringified("Open addressing scans for a free slot.")}),
        point(5, 0.51, {"text": stringified("Load factor triggers a resize.")}),
    ]


@pytest.fixture
def config():
    return {
        "retrieval": {"collection": "docs", "top_k": 5},
        "generation": {"max_tokens": 256, "role_format": "<|{role}|>\n{content}"},
        "prompt": {"template_name": "query", "template_file": None},
    }


@pytest.fixture
def embedder():
    return EmbeddingService(FakeEmbeddingBackend())


@pytest.fixture
def make_resources(embedder):
    def _make(points=None, qdrant_error=None, generator=None):
        client = FakeQdrantClient(points, error=qdrant_error)
        return Resources(
            embedder=embedder,
            index=VectorIndexClient(client),
            generator=generator if generator is not None else FakeGenerator(),
        )
    return _make


@pytest.fixture
def quiet_builder():
    return ContextBuilder(logger=_NullLogger())


class _NullLogger:
    def __init__(self) -> None:
        self.warnings: List[str] = []

    def info(self, message): pass

    def debug(self, message): pass

    def warning(self, message):
        self.warnings.append(message)


@pytest.fixture
def null_logger():
    return _NullLogger()


def result(id, score, payload) -> SearchResult:
    return SearchResult(id=id, score=score, payload=payload)
