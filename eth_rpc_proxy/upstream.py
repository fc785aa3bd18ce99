"""Upstream JSON-RPC transport.

- :py:class:`UpstreamClient` is the contract the proxy core depends on
- :py:class:`AiohttpUpstream` posts payloads to one provider URL over HTTP

A JSON-RPC error envelope returned by the provider is a normal return value here.
Only transport level failures raise :py:class:`~eth_rpc_proxy.exceptions.UpstreamError`.
"""

import asyncio
import logging
from collections import Counter
from pprint import pformat
from typing import Any, Protocol

import aiohttp
import ujson
from web3.types import RPCResponse

from eth_rpc_proxy.exceptions import UpstreamError
from eth_rpc_proxy.types import RPCRequest
from eth_rpc_proxy.utils import get_url_domain

logger = logging.getLogger(__name__)

#: Default HTTP timeout for one upstream call, seconds
DEFAULT_UPSTREAM_TIMEOUT = 30.0


class UpstreamClient(Protocol):
    """Send one JSON-RPC payload to the upstream provider."""

    async def send(self, payload: RPCRequest) -> RPCResponse:
        """Return the decoded upstream response.

        :raise UpstreamError:
            On transport failure
        """

    async def close(self):
        """Release any held connections. Called once on shutdown."""


def _decode_body(body: str) -> Any:
    """Best effort decoding of an error reply for diagnostics."""
    try:
        return ujson.loads(body)
    except ValueError:
        return body


class AiohttpUpstream:
    """Forward JSON-RPC payloads to a provider using a shared :py:class:`aiohttp.ClientSession`.

    - HTTP status codes >= 400, connection errors, timeouts and replies that are not UTF-8 JSON
      raise :py:class:`UpstreamError`

    - Counts calls per JSON-RPC method in :py:attr:`api_call_counts`
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        :param rpc_url:
            Provider JSON-RPC URL. May contain an API key.

        :param timeout:
            Total timeout per call in seconds

        :param session:
            Optional session for connection pooling. If not given, we create one lazily
            and close it in :py:meth:`close`.
        """
        assert rpc_url, "Upstream RPC URL missing"
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session
        self.close_session = session is None

        #: Calls per JSON-RPC method, plus ``total``
        self.api_call_counts = Counter()

    def __repr__(self):
        return f"<AiohttpUpstream {get_url_domain(self.rpc_url)}>"

    def get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self.session

    async def send(self, payload: RPCRequest) -> RPCResponse:
        method = payload.get("method") if isinstance(payload, dict) else None
        self.api_call_counts[method if isinstance(method, str) else "unknown"] += 1
        self.api_call_counts["total"] += 1

        session = self.get_session()

        try:
            async with session.post(
                self.rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                raw = await response.read()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = f"Upstream request to {get_url_domain(self.rpc_url)} failed: {e.__class__.__name__}: {e}"
            logger.error("Error in RPC request:\n%s\nResponse error: %s", pformat(payload), message)
            raise UpstreamError(message, request=payload, error=str(e)) from e

        # Lossy text is only used in diagnostics
        body = raw.decode("utf-8", errors="replace")

        if status >= 400:
            error = _decode_body(body)
            logger.error("Error in RPC request:\n%s\nResponse error: HTTP %d %s", pformat(payload), status, error)
            raise UpstreamError(
                f"Upstream {get_url_domain(self.rpc_url)} replied with HTTP status {status}",
                request=payload,
                error=error,
            )

        try:
            return ujson.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.error("Error in RPC request:\n%s\nUpstream reply is not JSON: %s", pformat(payload), body[0:200])
            raise UpstreamError(f"Upstream {get_url_domain(self.rpc_url)} replied with non-JSON content", request=payload, error=body) from e

    async def close(self):
        """Release the HTTP session, if we own it."""
        if self.session is not None and self.close_session:
            await self.session.close()
            self.session = None
