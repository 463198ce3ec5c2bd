import httpx
import pytest

from semantic_memory.core.errors import (
    EmbeddingTimeoutError,
    MalformedInputError,
    ModelNotFoundError,
    ServiceUnreachableError,
    TransientServiceError,
)
from semantic_memory.infrastructure.embeddings import OllamaEmbeddingClient


def client_for(handler) -> OllamaEmbeddingClient:
    return OllamaEmbeddingClient(host="http://ollama.test:11434", transport=httpx.MockTransport(handler))


async def test_generate_posts_model_and_input():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={"model": "nomic-embed-text", "embeddings": [[0.1, 0.2, 0.3]]})

    client = client_for(handler)
    vector = await client.generate("nomic-embed-text", "hello")

    assert vector == [0.1, 0.2, 0.3]
    assert seen["path"] == "/api/embed"
    assert b'"input":"hello"' in seen["body"].replace(b" ", b"")
    await client.close()


@pytest.mark.parametrize(
    ("status", "body", "expected"),
    [
        (404, {"error": "model 'nope' not found, try pulling it first"}, ModelNotFoundError),
        (400, {"error": "model \"nope\" not found"}, ModelNotFoundError),
        (400, {"error": "invalid input type"}, MalformedInputError),
        (500, {"error": "llama runner process has terminated"}, ServiceUnreachableError),
        (503, {"error": "server busy"}, ServiceUnreachableError),
    ],
)
async def test_error_responses_map_to_error_kinds(status, body, expected):
    client = client_for(lambda request: httpx.Response(status, json=body))
    with pytest.raises(expected):
        await client.generate("nope", "hello")
    await client.close()


async def test_unusable_bodies_are_malformed():
    responses = iter(
        [
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"embeddings": []}),
            httpx.Response(200, json={"embeddings": [[1.0, float("nan")]]}),
            httpx.Response(200, json={"embeddings": [["a", 1.0]]}),
            httpx.Response(200, json={"embeddings": [[None, 1.0]]}),
            httpx.Response(200, json={"embeddings": {"0": [1.0]}}),
        ]
    )
    client = client_for(lambda request: next(responses))
    for _ in range(6):
        with pytest.raises(MalformedInputError):
            await client.generate("nomic-embed-text", "hello")
    await client.close()


async def test_connection_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = client_for(handler)
    with pytest.raises(ServiceUnreachableError) as exc_info:
        await client.generate("nomic-embed-text", "hello")
    assert isinstance(exc_info.value, TransientServiceError)
    await client.close()


async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = client_for(handler)
    with pytest.raises(EmbeddingTimeoutError):
        await client.generate("nomic-embed-text", "hello")
    await client.close()


async def test_health_reports_model_count():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "nomic-embed-text"}, {"name": "bge-m3"}]})

    client = client_for(handler)
    assert await client.health() == {"status": "healthy", "host": "http://ollama.test:11434", "models_count": 2}
    await client.close()


async def test_health_reports_unreachable_host():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = client_for(handler)
    health = await client.health()
    assert health["status"] == "unhealthy"
    assert "Cannot connect to Ollama" in health["error"]
    await client.close()
