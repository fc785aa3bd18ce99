"""Proxy orchestration.

:py:class:`RPCProxy` is what the HTTP layer calls for each incoming payload.

- ``eth_getLogs`` with ``toBlock: latest`` gets the latest block resolved first
- ``eth_getLogs`` wider than ``max_block_range`` is split and merged by
  :py:class:`~eth_rpc_proxy.batcher.BatchExecutor`
- Everything else is forwarded to the upstream verbatim, and the upstream reply is returned verbatim,
  including any upstream JSON-RPC errors
- Failures inside the proxy become JSON-RPC ``-32603`` errors carrying the original request ``id``
"""

import logging
from typing import Any

from web3.types import RPCResponse

from eth_rpc_proxy.batcher import BatchExecutor
from eth_rpc_proxy.block_range import DEFAULT_MAX_BLOCK_RANGE, BlockResolver, decode_block_number, encode_block_number, split_block_range
from eth_rpc_proxy.classifier import RequestKind, classify
from eth_rpc_proxy.exceptions import MalformedRequestError, ProxyError
from eth_rpc_proxy.rate_limiter import TokenBucketRateLimiter
from eth_rpc_proxy.types import INTERNAL_ERROR, LATEST_BLOCK, RPCRequest, make_error_response
from eth_rpc_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)


def replace_to_block(request: RPCRequest, to_block: int) -> RPCRequest:
    """Copy an ``eth_getLogs`` request with a concrete ``toBlock``."""
    params = request["params"]
    log_filter = {**params[0], "toBlock": encode_block_number(to_block)}
    return {**request, "params": [log_filter, *params[1:]]}


def make_internal_error(payload: Any, exc: Exception) -> RPCResponse:
    """Map a proxy failure to a JSON-RPC error answering ``payload``."""
    if isinstance(payload, dict):
        request_id = payload.get("id")
        jsonrpc = payload.get("jsonrpc", "2.0")
    else:
        request_id = None
        jsonrpc = "2.0"
    return make_error_response(request_id, INTERNAL_ERROR, "Internal error", data=str(exc), jsonrpc=jsonrpc)


class RPCProxy:
    """Route JSON-RPC payloads to passthrough or batched execution.

    The rate limiter is shared by all calls this proxy makes:
    passthrough calls, ``latest`` lookups and batch legs.
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        rate_limiter: TokenBucketRateLimiter,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
    ):
        """
        :param upstream:
            Transport to the upstream provider

        :param rate_limiter:
            Token bucket every upstream call must go through

        :param max_block_range:
            Largest ``eth_getLogs`` block span the provider accepts
        """
        assert max_block_range >= 1, f"Bad max_block_range: {max_block_range}"
        self.upstream = upstream
        self.rate_limiter = rate_limiter
        self.max_block_range = max_block_range
        self.resolver = BlockResolver(upstream, rate_limiter)
        self.executor = BatchExecutor(upstream, rate_limiter)

    async def handle_single(self, payload: Any) -> RPCResponse:
        """Process one JSON-RPC payload.

        Never raises for proxy failures, they are returned as error responses.
        """
        try:
            return await self.process(payload)
        except ProxyError as e:
            logger.warning("Request failed, returning internal error: %s", e)
            return make_internal_error(payload, e)

    async def handle_batch(self, payloads: Any) -> list[RPCResponse]:
        """Process an array of JSON-RPC payloads.

        Each element is processed on its own. A failing element becomes an
        error response in its slot and does not affect its siblings.

        :raise MalformedRequestError:
            If ``payloads`` is not a list
        """
        if not isinstance(payloads, list):
            raise MalformedRequestError("Expected array of RPC calls")

        results = []
        for payload in payloads:
            results.append(await self.handle_single(payload))
        return results

    async def process(self, payload: Any) -> RPCResponse:
        """Route a payload, letting failures propagate."""
        if classify(payload, self.max_block_range) == RequestKind.needs_batching:
            return await self.process_log_query(payload)
        return await self.forward(payload)

    async def process_log_query(self, request: RPCRequest) -> RPCResponse:
        to_block = request["params"][0]["toBlock"]
        if to_block == LATEST_BLOCK:
            resolved = await self.resolver.resolve(to_block)
            request = replace_to_block(request, resolved)
            # The concrete range may fit the provider limit after all
            if classify(request, self.max_block_range) == RequestKind.passthrough:
                return await self.forward(request)

        log_filter = request["params"][0]
        start = decode_block_number(log_filter["fromBlock"])
        end = decode_block_number(log_filter["toBlock"])
        plan = split_block_range(start, end, self.max_block_range)
        logger.info("Batching eth_getLogs from block %d to %d in %d legs", start, end, len(plan))
        return await self.executor.execute(request, plan)

    async def forward(self, payload: Any) -> RPCResponse:
        await self.rate_limiter.acquire()
        return await self.upstream.send(payload)
