"""Unit tests for the Ollama client against a stubbed API."""
import json

import httpx
import pytest

from cvportal.llm_client import OllamaClient


def make_client(handler):
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_chat_sends_options_and_returns_content():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.read())
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "Hello!"}})

    reply = await make_client(handler).chat(
        [{"role": "user", "content": "Hi"}], model="gemma3:12b", temperature=0.2, max_tokens=50
    )

    assert reply == "Hello!"
    assert seen["path"] == "/api/chat"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 50}


@pytest.mark.asyncio
async def test_embed_batch():
    def handler(request):
        body = json.loads(request.read())
        return httpx.Response(200, json={"embeddings": [[float(len(t))] * 3 for t in body["input"]]})

    vectors = await make_client(handler).embed(["a", "bb"], model="all-minilm")

    assert vectors == [[1.0, 1.0, 1.0], [2.0, 2.0, 2.0]]


@pytest.mark.asyncio
async def test_http_errors_propagate():
    def handler(request):
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(httpx.HTTPStatusError):
        await make_client(handler).embed(["a"])


@pytest.mark.asyncio
async def test_list_models():
    def handler(request):
        return httpx.Response(200, json={"models": [{"name": "gemma3:12b"}, {"name": "all-minilm"}]})

    assert await make_client(handler).list_models() == ["gemma3:12b", "all-minilm"]
