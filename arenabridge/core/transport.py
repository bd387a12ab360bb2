"""
Transport bridge: HTTP requests executed inside the browser identity.

The service only accepts requests that carry the browser's cookies, clearance
and fingerprint, so every request is issued by ``fetch`` inside the page. The
page relays the response back through one exposed function, keyed by a
per-request token:

    meta   status and headers (resolves the response before the body arrives)
    chunk  a decoded text fragment of the body
    end    the body is complete
    error  the fetch failed
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Protocol

from arenabridge.core.errors import TransportError
from arenabridge.utils.ids import request_token

logger = logging.getLogger(__name__)

BRIDGE_FUNCTION = "hostStreamBridge"

_EOF = object()

# Runs in the page. Relays the response through the exposed bridge function.
_FETCH_SCRIPT = """
async ({ url, method, headers, body, requestId, bridge }) => {
  const relay = window[bridge];
  try {
    const response = await fetch(url, { method, headers, body, credentials: "include" });
    await relay(requestId, {
      type: "meta",
      status: response.status,
      statusText: response.statusText,
      headers: Object.fromEntries(response.headers.entries())
    });
    if (response.body) {
      const reader = response.body.getReader();
      const decoder = new TextDecoder();
      while (true) {
        const { done, value } = await reader.read();
        if (done) break;
        await relay(requestId, { type: "chunk", data: decoder.decode(value, { stream: true }) });
      }
      const tail = decoder.decode();
      if (tail) await relay(requestId, { type: "chunk", data: tail });
    }
    await relay(requestId, { type: "end" });
  } catch (err) {
    await relay(requestId, { type: "error", error: String(err) });
  }
}
"""


@dataclass
class BridgeRequest:
    """One HTTP request to execute inside the browser."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None


class BridgeResponse:
    """
    A response whose status and headers are known before its body.

    Body chunks are pushed in by the transport with ``feed()``, and the stream
    is ended with ``finish()`` or ``fail()``. Reading the body to completion,
    or closing the response early, releases the transport's handler.
    """

    def __init__(
        self,
        status: int = 0,
        headers: dict[str, str] | None = None,
        status_text: str = "",
        on_close: Callable[[], None] | None = None,
    ):
        self.status = status
        self.status_text = status_text
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._closed = False
        self._consumed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    # ── Producer side ─────────────────────────────────────────────────

    def feed(self, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._queue.put_nowait(data)

    def finish(self) -> None:
        self._queue.put_nowait(_EOF)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    # ── Consumer side ─────────────────────────────────────────────────

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Iterate over body chunks. The body can only be read once."""
        if self._consumed:
            raise TransportError("Response body has already been consumed")
        self._consumed = True
        try:
            while True:
                item = await self._queue.get()
                if item is _EOF:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self._release()

    async def aread(self) -> bytes:
        parts = [chunk async for chunk in self.aiter_bytes()]
        return b"".join(parts)

    async def text(self) -> str:
        return (await self.aread()).decode("utf-8", errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.text())

    async def aclose(self) -> None:
        self._release()

    def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close()


class Transport(Protocol):
    """Anything that can execute a request as the privileged identity."""

    async def send(self, request: BridgeRequest) -> BridgeResponse: ...


class BrowserTransport:
    """
    Executes requests inside a Playwright page and streams responses back.

    The relay function is exposed on the page once for the lifetime of the
    transport; concurrent first requests wait on the same installation.
    """

    def __init__(self, page: Any, bridge_name: str = BRIDGE_FUNCTION):
        self._page = page
        self._bridge_name = bridge_name
        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {}
        self._bridge_installed = False
        self._install_lock = asyncio.Lock()
        self._inflight: set[asyncio.Task] = set()

    @property
    def pending_requests(self) -> int:
        return len(self._handlers)

    async def _ensure_bridge(self) -> None:
        if self._bridge_installed:
            return
        async with self._install_lock:
            if self._bridge_installed:
                return
            try:
                await self._page.expose_function(self._bridge_name, self._dispatch)
                logger.debug(f"Exposed {self._bridge_name}")
            except Exception as e:
                msg = str(e)
                # Playwright: 'Function "<name>" has been already registered'
                if self._bridge_name in msg and "already" in msg:
                    logger.debug(f"{self._bridge_name} already exposed (race resolved)")
                else:
                    logger.error(f"Failed to expose {self._bridge_name}: {e}")
                    raise TransportError(
                        f"Failed to install stream bridge: {e}", original=e
                    ) from e
            self._bridge_installed = True

    def _dispatch(self, request_id: str, payload: dict[str, Any]) -> None:
        """Entry point called from the page for every relayed message."""
        handler = self._handlers.get(request_id)
        if handler is None:
            logger.warning(f"[{request_id}] No handler found for {payload.get('type')} message")
            return
        handler(payload)

    def _deregister(self, request_id: str) -> None:
        if self._handlers.pop(request_id, None) is not None:
            logger.debug(f"[{request_id}] Handler released")

    async def send(self, request: BridgeRequest) -> BridgeResponse:
        """
        Execute a request in the page.

        Returns as soon as status and headers are known; the body streams in
        afterwards.

        Raises:
            TransportError: If the bridge cannot be installed or the fetch
                fails before a status is received.
        """
        await self._ensure_bridge()

        request_id = request_token()
        loop = asyncio.get_running_loop()
        meta: asyncio.Future[BridgeResponse] = loop.create_future()
        response = BridgeResponse(on_close=lambda: self._deregister(request_id))

        def handle(msg: dict[str, Any]) -> None:
            kind = msg.get("type")
            if kind == "meta":
                logger.debug(f"[{request_id}] Meta received: {msg.get('status')}")
                response.status = int(msg.get("status") or 0)
                response.status_text = msg.get("statusText") or ""
                response.headers = {
                    k.lower(): v for k, v in (msg.get("headers") or {}).items()
                }
                if not meta.done():
                    meta.set_result(response)
            elif kind == "chunk":
                data = msg.get("data") or ""
                logger.debug(f"[{request_id}] Chunk length: {len(data)}")
                response.feed(data)
            elif kind == "end":
                logger.debug(f"[{request_id}] End of stream")
                response.finish()
                self._deregister(request_id)
            elif kind == "error":
                error = TransportError(f"Error from browser: {msg.get('error')}")
                logger.error(f"[{request_id}] {error}")
                if meta.done():
                    response.fail(error)
                else:
                    meta.set_exception(error)
                self._deregister(request_id)

        self._handlers[request_id] = handle
        logger.debug(f"[{request_id}] Starting {request.method} {request.url} in browser")

        task = asyncio.create_task(
            self._page.evaluate(
                _FETCH_SCRIPT,
                {
                    "url": request.url,
                    "method": request.method,
                    "headers": request.headers,
                    "body": request.body,
                    "requestId": request_id,
                    "bridge": self._bridge_name,
                },
            )
        )
        self._inflight.add(task)

        def evaluate_done(t: asyncio.Task) -> None:
            self._inflight.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is None:
                return
            error = TransportError(f"Bridged fetch failed: {exc}", original=exc)
            if not meta.done():
                meta.set_exception(error)
            elif request_id in self._handlers:
                response.fail(error)
            self._deregister(request_id)

        task.add_done_callback(evaluate_done)

        try:
            return await meta
        except BaseException:
            self._deregister(request_id)
            raise
