"""Single-shot HTTP exchange with a provider. No retries at this layer."""

import logging
import time

import httpx

from .builder import TextPayload, VisionPayload
from .completion import Completion, parse_completion
from .config import CONNECT_TIMEOUT, OVERALL_TIMEOUT
from .errors import TransportError

logger = logging.getLogger("cartwise")


class Transport:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client
        self._owns_client = client is None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(OVERALL_TIMEOUT, connect=CONNECT_TIMEOUT),
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def send(self, payload: TextPayload | VisionPayload) -> Completion:
        client = await self.get_client()
        start = time.monotonic()
        try:
            resp = await client.post(payload.endpoint, headers=payload.headers(), json=payload.body())
        except httpx.ConnectError as exc:
            logger.error("Cannot connect to provider: %s", payload.endpoint)
            raise TransportError(f"cannot connect to {payload.provider}") from exc
        except httpx.TimeoutException as exc:
            logger.error("Provider timeout: %s", payload.endpoint)
            raise TransportError(f"{payload.provider} request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("HTTP error talking to %s: %s", payload.endpoint, exc)
            raise TransportError(f"{payload.provider} request failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        body = resp.content
        if resp.status_code >= 400:
            logger.error("Provider %s returned %d: %s", payload.provider, resp.status_code, body[:500])
            raise TransportError(
                f"{payload.provider} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=body,
            )

        completion = parse_completion(body, resp.status_code, latency_ms)
        if not completion.content:
            # Still a completed, billable call; the extractor rejects it
            logger.warning("Provider %s returned no message content", payload.provider)
        return completion
