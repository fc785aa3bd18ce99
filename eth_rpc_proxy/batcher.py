"""Execute an oversized ``eth_getLogs`` query as a sequence of smaller legs.

- Legs are issued one by one in ascending block order, each after acquiring
  a rate limiter token

- Results are concatenated in leg order, so the caller sees the same log order
  as if the provider had served the full range in one go

- Any failing leg fails the whole request. Logs collected from the earlier legs
  are discarded, never returned as a partial result.
"""

import logging
from pprint import pformat

from web3.types import RPCResponse

from eth_rpc_proxy.block_range import encode_block_number
from eth_rpc_proxy.exceptions import UpstreamError
from eth_rpc_proxy.rate_limiter import TokenBucketRateLimiter
from eth_rpc_proxy.types import BlockRange, RPCRequest
from eth_rpc_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)


def make_leg_request(request: RPCRequest, block_range: BlockRange) -> RPCRequest:
    """Copy an ``eth_getLogs`` request with the filter narrowed to one block range.

    All other request and filter fields are kept as is.
    """
    params = request["params"]
    log_filter = params[0]
    leg_filter = {
        **log_filter,
        "fromBlock": encode_block_number(block_range.start),
        "toBlock": encode_block_number(block_range.end),
    }
    return {**request, "params": [leg_filter, *params[1:]]}


class BatchExecutor:
    """Run a batch plan against the upstream and merge the logs."""

    def __init__(self, upstream: UpstreamClient, rate_limiter: TokenBucketRateLimiter):
        self.upstream = upstream
        self.rate_limiter = rate_limiter

    async def execute(self, request: RPCRequest, plan: list[BlockRange]) -> RPCResponse:
        """Execute all legs of a plan.

        :param request:
            The original ``eth_getLogs`` request

        :param plan:
            Output of :py:func:`eth_rpc_proxy.block_range.split_block_range`

        :return:
            Response carrying the ``id`` of the original request and all logs in leg order

        :raise UpstreamError:
            If any leg fails at the transport level or the upstream returns an error for it
        """
        logs = []

        for idx, block_range in enumerate(plan, start=1):
            leg = make_leg_request(request, block_range)

            await self.rate_limiter.acquire()
            logger.debug("eth_getLogs leg %d/%d, blocks %d - %d", idx, len(plan), block_range.start, block_range.end)
            response = await self.upstream.send(leg)

            if not isinstance(response, dict):
                raise UpstreamError(f"Unexpected eth_getLogs reply for blocks {block_range.start} - {block_range.end}: {response}", request=leg, error=response)

            error = response.get("error")
            if error is not None:
                logger.error("Error in RPC request:\n%s\nResponse error: %s", pformat(leg), error)
                raise UpstreamError(
                    f"eth_getLogs failed for blocks {block_range.start} - {block_range.end}: {error}",
                    request=leg,
                    error=error,
                )

            result = response.get("result")
            if result is None:
                continue

            if not isinstance(result, list):
                raise UpstreamError(f"eth_getLogs result is not a list for blocks {block_range.start} - {block_range.end}", request=leg, error=result)

            logs.extend(result)

        return {
            "jsonrpc": request.get("jsonrpc"),
            "id": request.get("id"),
            "result": logs,
        }
