import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

import httpx

from .config import DEFAULT_TIMEOUT
from .errors import ForwardError

logger = logging.getLogger(__name__)

Body = bytes | AsyncIterable[bytes] | None


@dataclass
class OutboundAttempt:
    """
    What gets sent upstream for one inbound request.

    `headers` are the raw (name, value) pairs as received, order and
    duplicates preserved. A `bytes` body can be sent any number of times, an
    async iterable body only once.
    """
    method: str
    headers: list[tuple[bytes, bytes]]
    body: Body = None
    client_address: str = ""

    @property
    def replayable(self) -> bool:
        return self.body is None or isinstance(self.body, bytes)

    def outbound_headers(self) -> list[tuple[bytes, bytes]]:
        # host and body framing are derived by the transport
        dropped = {b"host", b"transfer-encoding"}
        if isinstance(self.body, bytes):
            dropped.add(b"content-length")
        if self.client_address:
            dropped.add(b"x-forwarded-for")

        headers = [(k, v) for k, v in self.headers if k.lower() not in dropped]
        if self.client_address:
            headers.append((b"X-Forwarded-For", self.client_address.encode("latin-1")))
        return headers


async def _chain(prefix: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    yield prefix
    async for chunk in rest:
        yield chunk


async def buffer_body(chunks: AsyncIterable[bytes], limit: int) -> bytes | AsyncIterator[bytes]:
    """
    Read a request body into memory so it can be replayed.

    :return: the whole body as bytes, or, once more than `limit` bytes have
        been read, a stream yielding what was read followed by the remainder
    """
    buffered = bytearray()
    iterator = chunks.__aiter__()
    async for chunk in iterator:
        buffered += chunk
        if len(buffered) > limit:
            return _chain(bytes(buffered), iterator)
    return bytes(buffered)


class Forwarder:
    """Executes one outbound HTTP call per `forward()`."""

    def __init__(self,
                 client: httpx.AsyncClient,
                 follow_redirects: bool = False,
                 timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.follow_redirects = follow_redirects
        self.timeout = timeout

    async def forward(self, attempt: OutboundAttempt, target_url: str) -> httpx.Response:
        """
        Send `attempt` to `target_url`.

        The returned response is open in streaming mode; the caller must close it.
        `timeout` bounds connect + receipt of the response headers.
        :raises ForwardError: the target could not be reached
        """
        logger.debug("Forwarding %s %s", attempt.method, target_url)
        # a redirect that resends the body cannot replay a single-use stream
        follow_redirects = self.follow_redirects and attempt.replayable
        try:
            request = self.client.build_request(
                attempt.method,
                target_url,
                headers=attempt.outbound_headers(),
                content=attempt.body,
            )
            return await asyncio.wait_for(
                self.client.send(request, stream=True, follow_redirects=follow_redirects),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ForwardError(target_url, httpx.TimeoutException(
                f"no response within {self.timeout}s"
            )) from exc
        except (httpx.RequestError, httpx.StreamError, httpx.InvalidURL) as exc:
            raise ForwardError(target_url, exc) from exc
