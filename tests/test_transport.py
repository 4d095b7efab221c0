"""Tests for completion parsing and the HTTP transport."""

import json

import httpx
import pytest

from cartwise.builder import build
from cartwise.completion import parse_completion
from cartwise.errors import TransportError
from cartwise.models import PromptRequest
from cartwise.registry import REGISTRY
from cartwise.transport import Transport

from conftest import chat_body


def _payload():
    request = PromptRequest(model_id="gpt-4o-mini", prompt="hello")
    return build(request, REGISTRY.resolve("gpt-4o-mini"), {"OpenAI": "sk-test"})


def test_parse_completion():
    body = json.dumps(chat_body("hi there", model="gpt-4o-mini")).encode()
    completion = parse_completion(body, 200, 250)
    assert completion.content == "hi there"
    assert completion.usage.input_tokens == 100
    assert completion.usage.output_tokens == 20
    assert completion.response_model == "gpt-4o-mini"
    assert completion.request_id == "chatcmpl-1"
    assert completion.latency_ms == 250


def test_parse_completion_without_usage():
    body = json.dumps(chat_body("hi", usage=None)).encode()
    assert parse_completion(body, 200).usage is None


def test_parse_completion_content_parts():
    data = chat_body("")
    data["choices"][0]["message"]["content"] = [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]
    assert parse_completion(json.dumps(data).encode(), 200).content == "ab"


def test_parse_completion_garbage():
    completion = parse_completion(b"<html>oops</html>", 200)
    assert completion.content == ""
    assert completion.usage is None


@pytest.mark.asyncio
async def test_send_success():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=chat_body("ok"))

    transport = Transport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    completion = await transport.send(_payload())
    assert completion.content == "ok"
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    assert json.loads(seen[0].content)["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_send_http_error_keeps_status_and_body():
    def handler(request):
        return httpx.Response(429, content=b'{"error": "rate limited"}')

    transport = Transport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(TransportError) as exc_info:
        await transport.send(_payload())
    assert exc_info.value.status_code == 429
    assert exc_info.value.body == b'{"error": "rate limited"}'


@pytest.mark.asyncio
async def test_send_empty_content_is_returned():
    def handler(request):
        return httpx.Response(200, json=chat_body(""))

    transport = Transport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    completion = await transport.send(_payload())
    assert completion.content == ""
    assert completion.status_code == 200
    assert completion.usage.input_tokens == 100


@pytest.mark.asyncio
async def test_send_connect_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    transport = Transport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(TransportError) as exc_info:
        await transport.send(_payload())
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    transport = Transport(client)
    await transport.close()
    assert not client.is_closed
    await client.aclose()
