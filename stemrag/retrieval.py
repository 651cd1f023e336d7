# =============================================================================
# Retrieval Module
# =============================================================================
# This module searches a Qdrant collection with a query embedding.
# Failures are surfaced immediately: there is no retry around the index.

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import grpc
from qdrant_client import QdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from stemrag.config import get_secrets, resolve_path
from stemrag.errors import IndexConnectionError, IndexQueryError


# gRPC status codes that mean "couldn't reach the server" rather than
# "the server rejected the query"
_GRPC_TRANSPORT_CODES = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.CANCELLED,
}


@dataclass(frozen=True)
class SearchResult:
    """One hit from the vector index."""
    id: Union[int, str]
    score: float
    payload: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self):
        return {'id': self.id, 'score': self.score, 'payload': self.payload}


def create_qdrant_client(config):
    """
    Create a Qdrant client from the 'qdrant' config section.

    A configured 'path' selects local on-disk storage (handy for tests and
    offline use); otherwise the client talks to the server at 'url'.

    Args:
        config: Configuration dictionary

    Returns:
        QdrantClient: A client for the configured index
    """
    settings = config.get('qdrant', {})

    if settings.get('path'):
        storage_path = resolve_path(settings['path'])
        storage_path.mkdir(parents=True, exist_ok=True)
        return QdrantClient(path=str(storage_path))

    return QdrantClient(
        url=settings.get('url', 'http://localhost:6333'),
        api_key=get_secrets().get('qdrant_api_key') or None,
        prefer_grpc=settings.get('prefer_grpc', False),
        timeout=settings.get('timeout', 30),
    )


def build_filter(raw_filter):
    """
    Turn a filter into a Qdrant Filter.

    Args:
        raw_filter: None, a models.Filter, or a dict in Qdrant's filter
                     shape, e.g. {"must": [{"key": "channel",
                     "match": {"value": "general"}}]}

    Returns:
        models.Filter or None

    Raises:
        IndexQueryError: If the dict isn't a valid filter
    """
    if raw_filter is None or isinstance(raw_filter, models.Filter):
        return raw_filter

    if not isinstance(raw_filter, dict):
        raise IndexQueryError(f"Filter must be a dict, got {type(raw_filter).__name__}")

    try:
        return models.Filter(**raw_filter)
    except (ValueError, TypeError) as e:
        raise IndexQueryError(f"Malformed filter: {e}") from e


class VectorIndexClient:
    """
    Nearest-neighbour search against a Qdrant collection.

    Args:
        client: A QdrantClient (see create_qdrant_client)
    """

    def __init__(self, client):
        self._client = client

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._client.close()

    def search(self, collection, vector, k, filter=None) -> List[SearchResult]:
        """
        Find the k points closest to a vector.

        Args:
            collection: Name of the Qdrant collection
            vector: The query embedding
            k: Maximum number of results (0 returns an empty list)
            filter: Optional structured predicate (see build_filter)

        Returns:
            list: SearchResult objects, highest score first, at most k long

        Raises:
            ValueError: If k is negative
            IndexConnectionError: If the index can't be reached
            IndexQueryError: If the collection doesn't exist or the query
                             is rejected
        """
        if k < 0:
            raise ValueError(f"k must be >= 0, got {k}")

        query_filter = build_filter(filter)

        if k == 0:
            return []

        try:
            response = self._client.query_points(
                collection_name=collection,
                query=list(vector),
                limit=k,
                query_filter=query_filter,
                with_payload=True,
            )
        except UnexpectedResponse as e:
            raise IndexQueryError(
                f"Query against '{collection}' rejected ({e.status_code}): {e.content!r}"
            ) from e
        except ResponseHandlingException as e:
            raise IndexConnectionError(f"Could not reach the vector index: {e}") from e
        except grpc.RpcError as e:
            if e.code() in _GRPC_TRANSPORT_CODES:
                raise IndexConnectionError(f"Could not reach the vector index: {e.details()}") from e
            raise IndexQueryError(f"Query against '{collection}' rejected: {e.details()}") from e
        except (ConnectionError, TimeoutError) as e:
            raise IndexConnectionError(f"Could not reach the vector index: {e}") from e
        except ValueError as e:
            # Local storage mode reports unknown collections this way
            raise IndexQueryError(f"Query against '{collection}' failed: {e}") from e

        results = [
            SearchResult(id=point.id, score=float(point.score), payload=point.payload)
            for point in response.points
        ]

        # Stable sort: ties keep the order the index returned them in
        results.sort(key=lambda r: r.score, reverse=True)

        return results[:k]


def format_results(results):
    """
    Format search results as one line per hit.

    Args:
        results: List of SearchResult objects

    Returns:
        str: Lines like "Id:7, Score:0.8123, {...payload...}"
    """
    lines = []
    for result in results:
        payload = json.dumps(result.payload, ensure_ascii=False) if result.payload is not None else 'None'
        lines.append(f"Id:{result.id}, Score:{result.score:.4f}, {payload}")
    return "\n".join(lines)
