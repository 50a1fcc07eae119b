import logging
from collections.abc import Sequence
from urllib.parse import urlsplit, urlunsplit

import httpx

from .errors import ForwardError, InvalidURLError
from .forwarder import Forwarder, OutboundAttempt

logger = logging.getLogger(__name__)

NOT_FOUND = 404


def _split(url: str):
    try:
        parsed = urlsplit(url)
    except ValueError as exc:
        raise InvalidURLError(f"invalid URL '{url}': {exc}") from exc
    if not parsed.scheme or not parsed.netloc:
        raise InvalidURLError(f"invalid URL '{url}': expected scheme://host")
    return parsed


def replace_host(url: str, mirror: str) -> str:
    """
    `url` with its scheme and host taken from `mirror`; path, query and
    fragment are kept as they are.
    :raises InvalidURLError: either URL lacks a scheme or a host
    """
    original = _split(url)
    replacement = _split(mirror)
    return urlunsplit((
        replacement.scheme,
        replacement.netloc,
        original.path,
        original.query,
        original.fragment,
    ))


class FailoverController:
    """
    Primary target first, then each mirror in order while the answer is 404.

    Only a 404 moves on to the next mirror. A transport failure of the primary
    propagates; a transport failure of a mirror skips that mirror.
    """

    def __init__(self, forwarder: Forwarder):
        self.forwarder = forwarder

    async def forward_with_failover(self,
                                    attempt: OutboundAttempt,
                                    primary_url: str,
                                    mirrors: Sequence[str]) -> httpx.Response:
        response = await self.forwarder.forward(attempt, primary_url)
        if response.status_code != NOT_FOUND or not mirrors:
            return response

        if not attempt.replayable:
            logger.warning(
                "Received 404 from %s but the request body was too large to replay, "
                "not trying mirrors", primary_url,
            )
            return response

        logger.info("Received 404 from %s, trying mirrors...", primary_url)
        for index, mirror in enumerate(mirrors, start=1):
            try:
                mirror_url = replace_host(primary_url, mirror)
            except InvalidURLError as exc:
                logger.warning("Failed to create mirror URL for %s: %s", mirror, exc)
                continue

            logger.info("Trying mirror %d/%d: %s", index, len(mirrors), mirror_url)
            try:
                mirror_response = await self.forwarder.forward(attempt, mirror_url)
            except ForwardError as exc:
                logger.warning("Mirror %s failed: %s", mirror, exc)
                continue

            # keep only the latest 404 open
            await response.aclose()
            response = mirror_response

            if response.status_code != NOT_FOUND:
                logger.info("Mirror %s succeeded with status %d", mirror, response.status_code)
                return response
            logger.info("Mirror %s also returned 404", mirror)

        return response
