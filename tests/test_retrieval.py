import grpc
import pytest
from qdrant_client import QdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from stemrag import retrieval
from stemrag.errors import IndexConnectionError, IndexQueryError
from stemrag.retrieval import SearchResult, VectorIndexClient, build_filter, create_qdrant_client, format_results
from tests.conftest import FakeQdrantClient, point

VECTOR = [0.1] * 8


# -----------------------------------------------------------------------------
# Against a fake client
# -----------------------------------------------------------------------------

def test_search_returns_at_most_k_sorted_results(five_points):
    index = VectorIndexClient(FakeQdrantClient(reversed(five_points)))

    for k in range(0, 8):
        results = index.search("docs", VECTOR, k)
        assert len(results) <= k
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)


def test_k_zero_does_not_query_the_index(five_points):
    client = FakeQdrantClient(five_points)
    assert VectorIndexClient(client).search("docs", VECTOR, 0) == []
    assert client.queries == []


def test_negative_k_is_rejected():
    with pytest.raises(ValueError):
        VectorIndexClient(FakeQdrantClient()).search("docs", VECTOR, -1)


def test_results_carry_id_score_payload(five_points):
    results = VectorIndexClient(FakeQdrantClient(five_points)).search("docs", VECTOR, 2)

    assert results[0] == SearchResult(id=1, score=0.91, payload=five_points[0].payload)
    assert results[1].id == 2


def test_ties_keep_index_order():
    client = FakeQdrantClient([point("a", 0.5, {}), point("b", 0.5, {}), point("c", 0.9, {})])
    results = VectorIndexClient(client).search("docs", VECTOR, 3)
    assert [r.id for r in results] == ["c", "a", "b"]


def test_dict_filter_is_passed_as_qdrant_filter(five_points):
    client = FakeQdrantClient(five_points)
    conditions = {"must": [{"key": "channel", "match": {"value": "general"}}]}

    VectorIndexClient(client).search("docs", VECTOR, 3, filter=conditions)

    sent = client.queries[0]["query_filter"]
    assert isinstance(sent, models.Filter)
    assert sent.must[0].key == "channel"


@pytest.mark.parametrize("bad", [
    {"must": "not a list"},
    "channel=general",
])
def test_malformed_filter_is_a_query_error(bad):
    with pytest.raises(IndexQueryError):
        VectorIndexClient(FakeQdrantClient()).search("docs", VECTOR, 3, filter=bad)


def test_rejected_query_is_a_query_error():
    error = UnexpectedResponse(404, "Not Found", b'{"status": {"error": "Collection missing"}}', {})
    with pytest.raises(IndexQueryError):
        VectorIndexClient(FakeQdrantClient(error=error)).search("missing", VECTOR, 3)


def test_transport_failure_is_a_connection_error():
    error = ResponseHandlingException(ConnectionRefusedError("connection refused"))
    with pytest.raises(IndexConnectionError):
        VectorIndexClient(FakeQdrantClient(error=error)).search("docs", VECTOR, 3)


def test_plain_connection_error_is_a_connection_error():
    with pytest.raises(IndexConnectionError):
        VectorIndexClient(FakeQdrantClient(error=ConnectionError("reset"))).search("docs", VECTOR, 3)


class _RpcError(grpc.RpcError):
    def __init__(self, code):
        self._code = code

    def code(self):
        return self._code

    def details(self):
        return self._code.name


def test_grpc_unavailable_is_a_connection_error():
    client = FakeQdrantClient(error=_RpcError(grpc.StatusCode.UNAVAILABLE))
    with pytest.raises(IndexConnectionError):
        VectorIndexClient(client).search("docs", VECTOR, 3)


def test_grpc_not_found_is_a_query_error():
    client = FakeQdrantClient(error=_RpcError(grpc.StatusCode.NOT_FOUND))
    with pytest.raises(IndexQueryError):
        VectorIndexClient(client).search("docs", VECTOR, 3)


def test_context_manager_closes_client():
    client = FakeQdrantClient()
    with VectorIndexClient(client):
        pass
    assert client.closed


def test_build_filter_passthrough():
    existing = models.Filter(must=[])
    assert build_filter(None) is None
    assert build_filter(existing) is existing


def test_format_results():
    text = format_results([
        SearchResult(id=7, score=0.81234, payload={"text": "x"}),
        SearchResult(id=8, score=0.5, payload=None),
    ])
    assert text.splitlines() == [
        'Id:7, Score:0.8123, {"text": "x"}',
        "Id:8, Score:0.5000, None",
    ]


# -----------------------------------------------------------------------------
# Against an in-memory Qdrant
# -----------------------------------------------------------------------------

@pytest.fixture
def memory_index():
    client = QdrantClient(":memory:")
    client.create_collection(
        collection_name="docs",
        vectors_config=models.VectorParams(size=4, distance=models.Distance.COSINE),
    )
    client.upsert(
        collection_name="docs",
        points=[
            models.PointStruct(id=1, vector=[1.0, 0.0, 0.0, 0.0], payload={"channel": "general", "text": "one"}),
            models.PointStruct(id=2, vector=[0.9, 0.1, 0.0, 0.0], payload={"channel": "random", "text": "two"}),
            models.PointStruct(id=3, vector=[0.0, 1.0, 0.0, 0.0], payload={"channel": "general", "text": "three"}),
            models.PointStruct(id=4, vector=[0.0, 0.0, 1.0, 0.0], payload={"channel": "general", "text": "four"}),
        ],
    )
    index = VectorIndexClient(client)
    yield index
    index.close()


def test_memory_search_orders_by_similarity(memory_index):
    results = memory_index.search("docs", [1.0, 0.0, 0.0, 0.0], 3)

    assert [r.id for r in results][:2] == [1, 2]
    assert len(results) == 3
    assert results[0].payload["text"] == "one"
    assert results[0].score >= results[1].score >= results[2].score


def test_memory_search_with_k_larger_than_collection(memory_index):
    assert len(memory_index.search("docs", [1.0, 0.0, 0.0, 0.0], 10)) == 4


def test_memory_search_with_filter(memory_index):
    conditions = {"must": [{"key": "channel", "match": {"value": "general"}}]}
    results = memory_index.search("docs", [1.0, 0.0, 0.0, 0.0], 10, filter=conditions)

    assert {r.id for r in results} == {1, 3, 4}


def test_memory_search_unknown_collection(memory_index):
    with pytest.raises(IndexQueryError):
        memory_index.search("nope", [1.0, 0.0, 0.0, 0.0], 3)


def test_create_client_with_local_path(tmp_path, monkeypatch):
    monkeypatch.setattr(retrieval, "resolve_path", lambda p: tmp_path / p)
    client = create_qdrant_client({"qdrant": {"path": "storage"}})
    try:
        assert isinstance(client, QdrantClient)
        assert (tmp_path / "storage").is_dir()
    finally:
        client.close()
