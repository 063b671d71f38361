"""Tests for the batched embedding client."""
import json

import httpx
import pytest

from papertrail.errors import EmbeddingProviderError
from papertrail.rag.embeddings import EmbeddingClient


def _scrambled_handler(requests):
    """Answer each batch with vectors listed in reverse index order."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        requests.append(payload)
        data = [
            {"index": i, "embedding": [float(len(text)), float(i)]}
            for i, text in enumerate(payload["input"])
        ]
        return httpx.Response(200, json={"data": list(reversed(data))})

    return handler


class TestEmbeddingClient:
    def test_requires_api_key(self):
        with pytest.raises(EmbeddingProviderError):
            EmbeddingClient(api_key="")

    async def test_preserves_input_order_across_scrambled_batches(self):
        requests = []
        client = EmbeddingClient(
            api_key="sk-test",
            base_url="https://embeddings.test/v1",
            batch_size=3,
            transport=httpx.MockTransport(_scrambled_handler(requests)),
        )
        texts = ["a" * n for n in range(1, 8)]

        vectors = await client.embed_batch(texts)

        assert [v[0] for v in vectors] == [float(len(t)) for t in texts]
        assert [len(r["input"]) for r in requests] == [3, 3, 1]
        assert requests[0]["model"] == "text-embedding-3-small"
        assert requests[0]["dimensions"] == 1536

    async def test_sends_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5]}]})

        client = EmbeddingClient(
            api_key="sk-test",
            base_url="https://embeddings.test/v1/",
            transport=httpx.MockTransport(handler),
        )

        assert await client.embed_query("hello") == [0.5]
        assert seen == {"auth": "Bearer sk-test", "url": "https://embeddings.test/v1/embeddings"}

    async def test_empty_input_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = EmbeddingClient(api_key="sk-test", transport=httpx.MockTransport(handler))
        assert await client.embed_batch([]) == []

    async def test_http_error_status_raises(self):
        client = EmbeddingClient(
            api_key="sk-test",
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key")),
        )
        with pytest.raises(EmbeddingProviderError, match="401"):
            await client.embed_batch(["text"])

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = EmbeddingClient(api_key="sk-test", transport=httpx.MockTransport(handler))
        with pytest.raises(EmbeddingProviderError):
            await client.embed_query("text")

    async def test_count_mismatch_raises(self):
        client = EmbeddingClient(
            api_key="sk-test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})
            ),
        )
        with pytest.raises(EmbeddingProviderError, match="Expected 2"):
            await client.embed_batch(["one", "two"])

    async def test_malformed_response_raises(self):
        client = EmbeddingClient(
            api_key="sk-test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"oops": []})),
        )
        with pytest.raises(EmbeddingProviderError, match="Malformed"):
            await client.embed_batch(["one"])
