import pytest

from forum_rag.app.container import _as_mapping, build_container
from forum_rag.common.tokenisation import TiktokenTokenCounter
from forum_rag.retrieval.reranker import JinaReranker
from forum_rag.retrieval.retriever import RerankingRetriever
from forum_rag.retrieval.text_splitter import ForumPostChunker


class Closable:
    def __init__(self, name, log, error=None):
        self.name = name
        self.log = log
        self.error = error

    async def aclose(self):
        self.log.append(self.name)
        if self.error is not None:
            raise self.error

    async def close(self):
        await self.aclose()


def test_components_are_built_lazily_and_cached(fake_config):
    """
    Test that components are created from their config sections and reused.
    """
    container = build_container(fake_config)

    assert "token_counter" not in container.__dict__
    counter = container.token_counter
    assert isinstance(counter, TiktokenTokenCounter)
    assert container.token_counter is counter

    chunker = container.chunker
    assert isinstance(chunker, ForumPostChunker)
    assert chunker.token_counter is counter
    assert chunker.max_tokens == 20

    reranker = container.reranker
    assert isinstance(reranker, JinaReranker)
    assert reranker.config is fake_config.reranker


def test_retriever_uses_configured_pool_size(fake_config):
    """
    Test that the retriever is wired to the shared components.
    """
    container = build_container(fake_config)
    container.__dict__["embedder"] = object()
    container.__dict__["vector_store"] = object()

    retriever = container.retriever

    assert isinstance(retriever, RerankingRetriever)
    assert retriever.wide_top_k == 50
    assert retriever.embedder is container.embedder
    assert retriever.reranker is container.reranker


@pytest.mark.asyncio
async def test_aclose_releases_built_components_in_order(fake_config):
    """
    Test that only built components are closed, network clients before the tokenizer.
    """
    log: list[str] = []
    container = build_container(fake_config)
    container.__dict__["reranker"] = Closable("reranker", log)
    container.__dict__["vector_store"] = Closable("vector_store", log)
    container.__dict__["embedder"] = Closable("embedder", log)
    counter = container.token_counter

    await container.aclose()

    assert log == ["reranker", "vector_store", "embedder"]
    assert counter.closed


@pytest.mark.asyncio
async def test_aclose_with_nothing_built(fake_config):
    await build_container(fake_config).aclose()


def test_as_mapping():
    assert _as_mapping({"a": 1}) == {"a": 1}
    with pytest.raises(TypeError):
        _as_mapping(42)


@pytest.mark.asyncio
async def test_aclose_releases_tokenizer_when_a_client_fails_to_close(fake_config):
    """
    Test that a failing close step still runs the later steps and releases the tokenizer.
    """
    log: list[str] = []
    container = build_container(fake_config)
    container.__dict__["reranker"] = Closable("reranker", log, error=RuntimeError("reranker"))
    container.__dict__["vector_store"] = Closable("vector_store", log)
    container.__dict__["embedder"] = Closable("embedder", log)
    counter = container.token_counter

    with pytest.raises(RuntimeError, match="reranker"):
        await container.aclose()

    assert log == ["reranker", "vector_store", "embedder"]
    assert counter.closed
