"""Decide whether an incoming JSON-RPC request needs range batching."""

import enum
from collections.abc import Mapping
from typing import Any

from eth_rpc_proxy.block_range import decode_block_number
from eth_rpc_proxy.exceptions import DecodeError
from eth_rpc_proxy.types import GET_LOGS, LATEST_BLOCK


class RequestKind(enum.Enum):
    """How the proxy handles a request."""

    #: Forward to upstream unmodified
    passthrough = "passthrough"

    #: ``eth_getLogs`` whose range is ``latest`` or larger than the provider allows
    needs_batching = "needs_batching"


def get_log_filter(request: Any) -> Mapping | None:
    """Get the filter object of an ``eth_getLogs`` request.

    :return:
        ``params[0]`` or ``None`` if this is not a log filter request we understand
    """
    if not isinstance(request, Mapping) or request.get("method") != GET_LOGS:
        return None

    params = request.get("params")
    if not isinstance(params, list) or len(params) == 0:
        return None

    log_filter = params[0]
    if not isinstance(log_filter, Mapping):
        return None

    return log_filter


def classify(request: Any, max_range: int) -> RequestKind:
    """Classify a JSON-RPC request.

    Only ``eth_getLogs`` with both ``fromBlock`` and ``toBlock`` set may need batching:
    ``toBlock`` is ``latest``, or the range is wider than ``max_range``.
    Everything else, including malformed filters, is passed through
    and left for the upstream to judge.
    """
    log_filter = get_log_filter(request)
    if log_filter is None:
        return RequestKind.passthrough

    from_block = log_filter.get("fromBlock")
    to_block = log_filter.get("toBlock")
    if not from_block or not to_block:
        return RequestKind.passthrough

    if to_block == LATEST_BLOCK:
        return RequestKind.needs_batching

    try:
        start = decode_block_number(from_block)
        end = decode_block_number(to_block)
    except DecodeError:
        return RequestKind.passthrough

    if end - start > max_range:
        return RequestKind.needs_batching

    return RequestKind.passthrough
