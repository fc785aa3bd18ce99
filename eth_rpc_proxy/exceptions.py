"""Proxy exception hierarchy.

All failures raised inside the proxy core derive from :py:class:`ProxyError`,
so the orchestrator can map them to JSON-RPC error envelopes in one place.
"""

from typing import Any

from eth_rpc_proxy.types import INTERNAL_ERROR, INVALID_REQUEST, RPCRequest


class ProxyError(Exception):
    """Base class for failures the proxy reports back as JSON-RPC errors."""

    #: JSON-RPC error code used when this failure is returned to the client
    code: int = INTERNAL_ERROR


class DecodeError(ProxyError, ValueError):
    """A block number was not a valid ``0x`` prefixed hex string."""


class UpstreamError(ProxyError):
    """An upstream JSON-RPC call we issued failed.

    Raised for transport failures (connection errors, timeouts, bad HTTP status,
    non-JSON replies) and for upstream error envelopes in calls
    the proxy makes internally: resolving ``latest`` and ``eth_getLogs`` batch legs.
    """

    def __init__(self, message: str, request: RPCRequest | None = None, error: Any = None):
        super().__init__(message)

        #: The payload we sent upstream
        self.request = request

        #: Upstream error object, raw response body or exception string
        self.error = error


class MalformedRequestError(ProxyError):
    """The batch endpoint was given something else than a JSON array."""

    code = INVALID_REQUEST
