from types import SimpleNamespace

import pytest

from forum_rag.common.schemas import SearchMatch
from forum_rag.common.tokenisation import HuggingFaceTokenCounter


class DummyTokenizer:
    """
    Very simple tokenizer for tests:
    - encode: splits on whitespace, returns list of "tokens"
    - decode: joins token list with a single space
    """

    def encode(self, text: str, add_special_tokens: bool = True):
        """
        Split text into tokens by whitespace.
        """
        text = text or ""
        return text.strip().split()

    def decode(self, tokens, skip_special_tokens: bool = False):
        """
        Join list of tokens into a single string with spaces.
        """
        if isinstance(tokens, list):
            return " ".join(tokens)
        return str(tokens)


@pytest.fixture
def token_counter():
    """
    Whitespace token counter, so token budgets in tests are word counts.
    """
    return HuggingFaceTokenCounter(tokenizer=DummyTokenizer())


def make_match(idx: int, score: float = 0.5, text: str | None = None, **metadata) -> SearchMatch:
    """
    Build a search candidate whose ``post_text`` defaults to ``"post <idx>"``.
    """
    payload = {"post_text": text if text is not None else f"post {idx}", **metadata}
    return SearchMatch(id=f"post-{idx}", score=score, metadata=payload)


@pytest.fixture
def make_candidate():
    return make_match


@pytest.fixture
def fake_config():
    """
    Minimal stand-in for GlobalConfig with every section present.
    """
    from forum_rag.config.settings import ChunkingConfig, RerankerConfig

    return SimpleNamespace(
        tokenization={"type": "tiktoken"},
        chunking=ChunkingConfig(max_tokens=20, overlap=5),
        embedder={"kind": "openai_like"},
        vector_store={"type": "qdrant", "collection_name": "test"},
        retriever={"wide_top_k": 50},
        reranker=RerankerConfig(api_key="test-key"),
        logging={},
    )
