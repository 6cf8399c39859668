import asyncio
import json

import httpx
import pytest

from forum_rag.common.errors import RerankerError, RerankerResponseError
from forum_rag.common.schemas import SearchMatch
from forum_rag.config.settings import AdaptiveTopKConfig, RerankerConfig
from forum_rag.retrieval import reranker as reranker_module
from forum_rag.retrieval.reranker import (
    JinaReranker,
    create_reranker,
    extract_document_text,
    is_retryable_error,
)


def _make_config(**overrides) -> RerankerConfig:
    values = {"api_key": "test-key", "backoff_base_seconds": 0.0}
    values.update(overrides)
    return RerankerConfig(**values)


def _make_reranker(handler, **overrides):
    """
    Build a reranker whose HTTP traffic is answered by ``handler``.

    Returns the reranker and the list of captured requests.
    """
    requests: list[httpx.Request] = []

    async def recording_handler(request: httpx.Request):
        requests.append(request)
        result = handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
    return JinaReranker(_make_config(**overrides), http_client=client), requests


def _ok(results: list[tuple[int, float]]):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "results": [{"index": i, "relevance_score": s} for i, s in results],
                "usage": {"total_tokens": 42},
            },
        )

    return handler


def _status(code: int, body: str = "upstream error"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(code, text=body)

    return handler


def _assert_passthrough(result, candidates):
    assert result.fallback
    assert [c.chunk.id for c in result.chunks] == [c.id for c in candidates]
    for scored, candidate in zip(result.chunks, candidates):
        assert scored.original_score == candidate.score
        assert scored.reranker_score == candidate.score


@pytest.mark.asyncio
async def test_rerank_sorts_filters_and_reports_metrics(make_candidate):
    """
    Test that results returned in arbitrary order are mapped back by index,
    sorted descending and filtered by ``min_score``.
    """
    candidates = [make_candidate(i, score=0.5 + i * 0.01) for i in range(4)]
    reranker, requests = _make_reranker(_ok([(0, 0.2), (1, 0.6), (3, 0.85), (2, 0.9)]))

    result = await reranker.rerank("Wärmepumpe Dämmung", candidates)

    assert not result.fallback
    assert len(requests) == 1
    assert [c.chunk.id for c in result.chunks] == ["post-2", "post-3", "post-1"]
    assert [c.reranker_score for c in result.chunks] == [0.9, 0.85, 0.6]
    assert result.chunks[0].original_score == candidates[2].score

    metrics = result.metrics
    assert metrics.original_count == 4
    assert metrics.filtered_count == 1
    assert metrics.final_count == 3
    assert metrics.score_mean == pytest.approx((0.9 + 0.85 + 0.6) / 3)
    assert metrics.score_std_dev > 0
    assert metrics.reranking_latency_ms >= 0


@pytest.mark.asyncio
async def test_rerank_applies_adaptive_top_k(make_candidate):
    """
    Test that the adaptive cut is applied after filtering.
    """
    scores = [0.95, 0.92, 0.88, 0.45, 0.42]
    candidates = [make_candidate(i) for i in range(5)]
    reranker, _ = _make_reranker(
        _ok(list(enumerate(scores))),
        adaptive_top_k=AdaptiveTopKConfig(min=3, max=15, score_gap_threshold=0.1),
    )

    result = await reranker.rerank("query", candidates)

    assert [c.chunk.id for c in result.chunks] == ["post-0", "post-1", "post-2"]
    assert result.metrics.filtered_count == 0
    assert result.metrics.final_count == 3


@pytest.mark.asyncio
async def test_rerank_request_body_and_headers(make_candidate):
    """
    Test the wire format of the rerank request and the document text priority.
    """
    candidates = [
        make_candidate(0, text="full post"),
        SearchMatch(id="p1", score=0.4, metadata={"content_preview": "preview only", "text": "ignored"}),
        SearchMatch(id="p2", score=0.3, metadata={"text": "plain text"}),
        SearchMatch(id="p3", score=0.2, metadata={"url": "https://example.com"}),
    ]
    reranker, requests = _make_reranker(
        _ok([(i, 0.9) for i in range(4)]),
        model="jina-reranker-v2-base-multilingual",
    )

    await reranker.rerank("Heizlast berechnen", candidates)

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://api.jina.ai/v1/rerank"
    assert request.headers["Authorization"] == "Bearer test-key"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {
        "model": "jina-reranker-v2-base-multilingual",
        "query": "Heizlast berechnen",
        "documents": ["full post", "preview only", "plain text", ""],
        "top_n": 4,
    }


def test_extract_document_text_skips_empty_values():
    """
    Test that empty strings and non-strings fall through to the next source.
    """
    match = SearchMatch(id="x", metadata={"post_text": "", "content_preview": 5, "text": "fallback"})
    assert extract_document_text(match) == "fallback"


@pytest.mark.asyncio
async def test_rerank_retries_server_errors_then_falls_back(make_candidate):
    """
    Test that a persistent 503 is attempted ``1 + max_retries`` times before
    returning the candidates unchanged.
    """
    candidates = [make_candidate(i, score=0.9 - i * 0.1) for i in range(3)]
    reranker, requests = _make_reranker(_status(503), max_retries=2)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 3
    _assert_passthrough(result, candidates)
    assert result.metrics.original_count == 3
    assert result.metrics.filtered_count == 0
    assert result.metrics.final_count == 3


@pytest.mark.asyncio
async def test_rerank_recovers_after_transient_error(make_candidate):
    """
    Test that a 503 followed by a success returns the reranked result.
    """
    calls = {"count": 0}
    success = _ok([(0, 0.8), (1, 0.7)])

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503, text="busy")
        return success(request)

    candidates = [make_candidate(0), make_candidate(1)]
    reranker, requests = _make_reranker(handler)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 2
    assert not result.fallback
    assert [c.reranker_score for c in result.chunks] == [0.8, 0.7]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 422])
async def test_rerank_does_not_retry_client_errors(make_candidate, status):
    """
    Test that 4xx responses fail immediately and fall back.
    """
    candidates = [make_candidate(0), make_candidate(1)]
    reranker, requests = _make_reranker(_status(status, "bad request: 503 not involved"))

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 1
    _assert_passthrough(result, candidates)


@pytest.mark.asyncio
async def test_rerank_out_of_range_index_500_is_not_retried(make_candidate):
    """
    Test that an out-of-range index whose message contains a 5xx code still falls back at once.
    """
    def handler(request):
        return httpx.Response(200, json={"results": [{"index": 500, "relevance_score": 0.9}]})

    candidates = [make_candidate(0), make_candidate(1), make_candidate(2)]
    reranker, requests = _make_reranker(handler, max_retries=2)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 1
    _assert_passthrough(result, candidates)


@pytest.mark.asyncio
async def test_rerank_times_out_and_falls_back(make_candidate):
    """
    Test that a slow service is abandoned after ``timeout_ms`` and each
    timed-out attempt is retried.
    """
    async def slow(request):
        await asyncio.sleep(1.0)
        return httpx.Response(200, json={"results": []})

    candidates = [make_candidate(0), make_candidate(1)]
    reranker, requests = _make_reranker(slow, timeout_ms=50, max_retries=1)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 2
    _assert_passthrough(result, candidates)
    assert result.metrics.reranking_latency_ms >= 90


@pytest.mark.asyncio
async def test_rerank_retries_network_errors(make_candidate):
    """
    Test that connection failures are treated as transient.
    """
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    candidates = [make_candidate(0)]
    reranker, requests = _make_reranker(refuse, max_retries=2)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 3
    _assert_passthrough(result, candidates)


@pytest.mark.asyncio
async def test_rerank_backoff_doubles_between_attempts(make_candidate, monkeypatch):
    """
    Test the exponential backoff schedule ``2 ** attempt * base``.
    """
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(reranker_module.asyncio, "sleep", fake_sleep)
    reranker, requests = _make_reranker(_status(502), max_retries=3, backoff_base_seconds=1.0)

    await reranker.rerank("query", [make_candidate(0)])

    assert len(requests) == 4
    assert delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"data": []},
        {"results": [{"index": 0}]},
        {"results": [{"index": 9, "relevance_score": 0.5}]},
        {"results": "nope"},
    ],
)
async def test_rerank_malformed_response_is_not_retried(make_candidate, payload):
    """
    Test that an unusable response body triggers an immediate fallback.
    """
    def handler(request):
        return httpx.Response(200, json=payload)

    candidates = [make_candidate(0), make_candidate(1)]
    reranker, requests = _make_reranker(handler, max_retries=2)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 1
    _assert_passthrough(result, candidates)


@pytest.mark.asyncio
async def test_rerank_invalid_json_falls_back(make_candidate):
    """
    Test that a non-JSON success body falls back.
    """
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    candidates = [make_candidate(0)]
    reranker, requests = _make_reranker(handler)

    result = await reranker.rerank("query", candidates)

    assert len(requests) == 1
    assert result.fallback


@pytest.mark.asyncio
async def test_rerank_disabled_passes_through_without_calling_service(make_candidate):
    """
    Test that a disabled reranker never calls the service and flags a fallback.
    """
    def handler(request):
        raise AssertionError("service must not be called")

    candidates = [make_candidate(0, score=0.7), make_candidate(1, score=None)]
    reranker, requests = _make_reranker(handler, enabled=False)

    result = await reranker.rerank("query", candidates)

    assert requests == []
    assert result.fallback
    assert [c.reranker_score for c in result.chunks] == [0.7, 0.0]
    assert result.metrics.final_count == 2
    assert result.metrics.reranking_latency_ms == 0.0


@pytest.mark.asyncio
async def test_rerank_empty_candidates(make_candidate):
    """
    Test that no candidates yields an empty, non-fallback result.
    """
    reranker, requests = _make_reranker(_ok([]))

    result = await reranker.rerank("query", [])

    assert requests == []
    assert result.chunks == []
    assert not result.fallback
    assert result.metrics.original_count == 0


@pytest.mark.parametrize(
    "error, expected",
    [
        (RerankerError("Jina API error: 500 - boom", status_code=500), True),
        (RerankerError("Jina API error: 503 - busy", status_code=503), True),
        (RerankerError("Jina API error: 400 - mentions 503", status_code=400), False),
        (RerankerError("Jina API timeout after 5000ms"), True),
        (RerankerError("Jina API network error: ECONNREFUSED"), True),
        (RuntimeError("ENOTFOUND api.jina.ai"), True),
        (RerankerResponseError("Jina API response has no 'results' list"), False),
        (RerankerResponseError("Rerank result index 500 out of range"), False),
        (RerankerResponseError("Malformed rerank result: {'index': 'timeout'}"), False),
        (ValueError("invalid input"), False),
    ],
)
def test_is_retryable_error(error, expected):
    """
    Test transient-failure classification by status code and message.
    """
    assert is_retryable_error(error) is expected


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    """
    Test that only a client created by the reranker is closed by it.
    """
    client = httpx.AsyncClient(transport=httpx.MockTransport(_ok([])))
    injected = JinaReranker(_make_config(), http_client=client)
    await injected.aclose()
    assert not client.is_closed
    await client.aclose()

    owned = JinaReranker(_make_config())
    owned_client = owned.client
    await owned.aclose()
    assert owned_client.is_closed


def test_create_reranker_from_settings_and_mapping(monkeypatch):
    """
    Test the reranker factory for settings objects and config sections.
    """
    monkeypatch.delenv("JINA_API_KEY", raising=False)

    config = _make_config()
    assert create_reranker(config).config is config

    reranker = create_reranker({"type": "jina", "api_key": "k", "min_score": 0.5})
    assert isinstance(reranker, JinaReranker)
    assert reranker.config.api_key == "k"
    assert reranker.config.min_score == 0.5

    with pytest.raises(ValueError):
        create_reranker({"type": "cohere"})
