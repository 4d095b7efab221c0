"""Shared fixtures: a scripted chat-completion provider behind httpx.MockTransport."""

import json

import httpx
import pytest

from cartwise.config import Settings
from cartwise.ledger import UsageLedger
from cartwise.retry import TaxRetryController
from cartwise.service import AIService
from cartwise.transport import Transport

USAGE = {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120}


def chat_body(content, usage=USAGE, model="test-model"):
    body = {
        "id": "chatcmpl-1",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }
    if usage is not None:
        body["usage"] = usage
    return body


class ScriptedProvider:
    """Answers each request with the next scripted reply; the last one repeats.

    A reply is either message content (str) or a ready httpx.Response.
    """

    def __init__(self, *replies, usage=USAGE):
        self.replies = list(replies)
        self.usage = usage
        self.requests: list[dict] = []
        self.urls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.urls.append(str(request.url))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=chat_body(reply, self.usage))

    def prompts(self) -> list:
        return [r["messages"][0]["content"] for r in self.requests]


CREDENTIALS = {"OpenAI": "sk-test", "Perplexity": "pplx-test"}


@pytest.fixture
def sleep():
    """Stand-in for asyncio.sleep that only records the delays."""
    delays = []

    async def fake_sleep(delay: float):
        delays.append(delay)

    fake_sleep.delays = delays
    return fake_sleep


@pytest.fixture
def make_service(sleep):
    def factory(provider, ledger=None, max_retries=4, **settings):
        settings.setdefault("credentials", dict(CREDENTIALS))
        client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
        return AIService(
            Settings(**settings),
            Transport(client),
            ledger or UsageLedger(),
            retry=TaxRetryController(max_retries=max_retries, sleep=sleep),
        )

    return factory
