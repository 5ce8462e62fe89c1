"""
Provider transport: one long-lived streamed POST, re-established on disconnect.

`StreamingTransport.open()` performs the handshake eagerly so that a failed
initial connection surfaces immediately as ProviderConnectionError. The
returned async iterator yields RawEvent objects and finishes by raising
CleanEof when the server closes the body normally.
"""
from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

import httpx

from llm_stream.core.errors import CleanEof, ProviderConnectionError, TransportDisconnect
from llm_stream.resilience.reconnect import DEFAULT_RECONNECT_POLICY, ReconnectPolicy
from llm_stream.transport.framing import RawEvent, framer_for

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=30.0)
_ERROR_BODY_LIMIT = 500


@dataclass(frozen=True)
class RequestSpec:
    """A fully-formed request; the transport never edits it."""
    url: str
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    params: Dict[str, str] = field(default_factory=dict)

    def content(self) -> bytes:
        return json.dumps(self.body, ensure_ascii=False).encode("utf-8")


def _is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


class StreamingTransport:
    def __init__(
        self,
        policy: ReconnectPolicy = DEFAULT_RECONNECT_POLICY,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.policy = policy
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._log = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "StreamingTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def open(self, request: RequestSpec, framing: str) -> AsyncIterator[RawEvent]:
        framer_for(framing)  # fail fast on an unknown framing
        response = await self._open_initial(request)
        return self._events(request, framing, response)

    # Internal helpers

    async def _open_initial(self, request: RequestSpec) -> httpx.Response:
        attempt = 0
        while True:
            try:
                return await self._connect(request, {})
            except ProviderConnectionError as e:
                if not (self.policy.retry_initial_connection and e.retryable):
                    raise
                attempt += 1
                if not self.policy.allows(attempt):
                    raise
                delay = self.policy.compute_backoff(attempt)
                self._log.warning("Initial connection failed (%s); retrying in %.1fs", e, delay)
                await self._sleep(delay)

    async def _connect(self, request: RequestSpec, extra_headers: Dict[str, str]) -> httpx.Response:
        headers = {**request.headers, **extra_headers}
        self._log.info("%s %s", request.method, request.url)
        self._log.debug("request body: %s", request.body)
        req = self._client.build_request(
            request.method,
            request.url,
            params=request.params or None,
            headers=headers,
            content=request.content(),
        )
        try:
            response = await self._client.send(req, stream=True)
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"Could not connect to {request.url}: {e}") from e

        if response.status_code >= 400:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise ProviderConnectionError(
                f"HTTP {response.status_code} from {request.url}: {body[:_ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
                retryable=_is_retryable_status(response.status_code),
            )
        return response

    async def _events(self, request: RequestSpec, framing: str, response: httpx.Response) -> AsyncIterator[RawEvent]:
        delivered = 0            # data events handed to the caller so far
        seen_ids: Set[str] = set()
        # id-less events delivered after each id; "" counts those before the first id
        after_id: Dict[str, int] = {"": 0}
        last_event_id: Optional[str] = None
        retry_ms: Optional[int] = None
        attempt = 0

        while True:
            framer = framer_for(framing)
            # Replayed id-less events are skipped by position, counted from the last id.
            replay = after_id[last_event_id or ""]
            try:
                async for line in response.aiter_lines():
                    for event in framer.feed(line):
                        if event.is_comment:
                            yield event
                            continue
                        if event.id is not None:
                            if event.id in seen_ids:
                                # the server went back to an id we had; skip what followed it
                                replay = after_id[event.id]
                                continue
                            seen_ids.add(event.id)
                            after_id[event.id] = 0
                            last_event_id = event.id
                        elif replay > 0:
                            replay -= 1
                            continue
                        else:
                            after_id[last_event_id or ""] += 1
                        delivered += 1
                        attempt = 0
                        yield event
                framer.flush()
            except httpx.TransportError as e:
                if not self.policy.retry_on_disconnect:
                    raise TransportDisconnect(f"Stream from {request.url} dropped: {e}") from e
                self._log.warning("Stream from %s dropped after %d events: %s", request.url, delivered, e)
            else:
                raise CleanEof(f"{request.url} closed the stream")
            finally:
                await response.aclose()

            if framer.retry_ms is not None:
                retry_ms = framer.retry_ms
            response, attempt = await self._reconnect(request, attempt, last_event_id, retry_ms)

    async def _reconnect(
        self, request: RequestSpec, attempt: int, last_event_id: Optional[str], retry_ms: Optional[int] = None
    ):
        extra = {"Last-Event-ID": last_event_id} if last_event_id else {}
        policy = self.policy
        if retry_ms is not None:
            # the server's `retry:` hint replaces the first delay; backoff still applies
            policy = policy.with_initial_delay(retry_ms / 1000)
        while True:
            attempt += 1
            if not policy.allows(attempt):
                raise TransportDisconnect(
                    f"Gave up reconnecting to {request.url} after {attempt - 1} attempts"
                )
            delay = policy.compute_backoff(attempt)
            self._log.warning("Reconnecting to %s in %.1fs (attempt %d)", request.url, delay, attempt)
            await self._sleep(delay)
            try:
                return await self._connect(request, extra), attempt
            except ProviderConnectionError as e:
                if not e.retryable:
                    raise
                self._log.warning("Reconnect attempt %d failed: %s", attempt, e)
