"""JSON-RPC payload shapes and block range value types.

- Requests are passed around as plain decoded JSON dicts, because the proxy
  must forward anything it does not understand verbatim

- Responses use :py:class:`web3.types.RPCResponse`
"""

from dataclasses import dataclass
from typing import Any, TypeAlias

from web3.types import RPCEndpoint, RPCResponse

#: A decoded JSON-RPC request object.
#:
#: Only ``eth_getLogs`` requests are ever looked inside.
#:
RPCRequest: TypeAlias = dict[str, Any]

#: The only JSON-RPC method with a block range parameter we split
GET_LOGS: RPCEndpoint = RPCEndpoint("eth_getLogs")

#: Used to resolve the ``latest`` block tag
BLOCK_NUMBER: RPCEndpoint = RPCEndpoint("eth_blockNumber")

#: Symbolic block tag we know how to resolve
LATEST_BLOCK = "latest"

#: JSON-RPC 2.0 error code: invalid JSON was received
PARSE_ERROR = -32700

#: JSON-RPC 2.0 error code: the JSON sent is not a valid request object
INVALID_REQUEST = -32600

#: JSON-RPC 2.0 error code: internal JSON-RPC error
INTERNAL_ERROR = -32603


@dataclass(slots=True, frozen=True)
class BlockRange:
    """Inclusive range of block numbers ``[start, end]``."""

    start: int
    end: int

    def __post_init__(self):
        assert type(self.start) is int and type(self.end) is int, f"Block numbers must be ints: {self.start}, {self.end}"
        assert 0 <= self.start <= self.end, f"Bad block range: {self.start} - {self.end}"

    def __repr__(self):
        return f"<BlockRange {self.start:,} - {self.end:,}>"

    def span(self) -> int:
        """How many blocks this range covers."""
        return self.end - self.start + 1


def make_error_response(
    request_id: Any,
    code: int,
    message: str,
    data: Any = None,
    jsonrpc: str | None = "2.0",
) -> RPCResponse:
    """Build a JSON-RPC error envelope.

    :param request_id:
        The ``id`` of the request we are answering. ``None`` if unknown.

    :param jsonrpc:
        Echo the version of the originating request
    """
    return {
        "jsonrpc": jsonrpc,
        "id": request_id,
        "error": {
            "code": code,
            "message": message,
            "data": data,
        },
    }
