import logging
from collections.abc import AsyncIterator

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .config import DEFAULT_MAX_REPLAY_BODY_BYTES
from .errors import ForwardError
from .failover import FailoverController
from .forwarder import Forwarder, OutboundAttempt, buffer_body
from .routing import resolve
from .rules import RuleSet

logger = logging.getLogger(__name__)

# framing of the relayed body is redone by the serving transport
RESPONSE_FRAMING_HEADERS = {b"transfer-encoding"}


def request_path(request: Request) -> str:
    """Path as received on the wire (still percent-encoded), without the query."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


async def relay_body(response: httpx.Response, method: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        logger.error("Error copying response body from %s: %s", response.request.url, exc)
    finally:
        await response.aclose()
        logger.info("Completed: %s %s - Status: %d", method, response.request.url, response.status_code)


class GatewayHandler:
    """
    Per-request orchestration: resolve the target, forward (with mirror
    failover when mirrors are configured), stream the answer back.
    """

    def __init__(self,
                 rule_set: RuleSet,
                 forwarder: Forwarder,
                 max_replay_body_bytes: int = DEFAULT_MAX_REPLAY_BODY_BYTES):
        self.rule_set = rule_set
        self.forwarder = forwarder
        self.max_replay_body_bytes = max_replay_body_bytes
        self.failover = FailoverController(forwarder) if rule_set.mirrors else None

    async def build_attempt(self, request: Request) -> OutboundAttempt:
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        body = request.stream() if has_body else None

        # mirror retries resend the body, so it has to be held in memory
        if body is not None and self.failover is not None:
            body = await buffer_body(body, self.max_replay_body_bytes)
            if not isinstance(body, bytes):
                logger.warning(
                    "Request body exceeds %d bytes, mirror failover disabled for %s %s",
                    self.max_replay_body_bytes, request.method, request.url.path,
                )

        return OutboundAttempt(
            method=request.method,
            headers=list(request.headers.raw),
            body=body,
            client_address=request.client.host if request.client else "",
        )

    async def handle(self, request: Request) -> StreamingResponse:
        logger.info("Proxying request: %s %s", request.method, request.url)

        target = resolve(
            request.scope["path"], request.url.query, self.rule_set, raw_path=request_path(request)
        )
        if target is None:
            logger.warning("No route for %s %s: no default host configured and no mapping matched",
                           request.method, request.url.path)
            raise HTTPException(
                status_code=502,
                detail="Failed to build target URL: no default host configured and no mapping matched",
            )
        logger.info("Target URL: %s", target.url)

        attempt = await self.build_attempt(request)
        try:
            if self.failover is not None:
                upstream = await self.failover.forward_with_failover(
                    attempt, target.url, self.rule_set.mirrors
                )
            else:
                upstream = await self.forwarder.forward(attempt, target.url)
        except ForwardError as exc:
            logger.error("Error sending request to %s: %s", exc.target, exc.cause)
            raise HTTPException(status_code=502, detail=f"Failed to reach target server: {exc.cause}")

        response = StreamingResponse(
            relay_body(upstream, request.method),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [
            (k, v) for k, v in upstream.headers.raw if k.lower() not in RESPONSE_FRAMING_HEADERS
        ]
        return response
