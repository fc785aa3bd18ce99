"""Block number decoding and ``eth_getLogs`` range splitting.

Many RPC providers refuse ``eth_getLogs`` queries spanning more than a fixed
number of blocks, 10k being the most common limit.
We split such queries into smaller ranges with :py:func:`split_block_range`.
"""

import logging
from pprint import pformat
from typing import Any

from eth_utils import is_0x_prefixed, is_hexstr

from eth_rpc_proxy.exceptions import DecodeError, UpstreamError
from eth_rpc_proxy.rate_limiter import TokenBucketRateLimiter
from eth_rpc_proxy.types import BLOCK_NUMBER, LATEST_BLOCK, BlockRange, RPCRequest
from eth_rpc_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)

#: Default max blocks per eth_getLogs call.
#:
#: - See https://www.alchemy.com/docs/node/ethereum/ethereum-api-endpoints/eth-get-logs
DEFAULT_MAX_BLOCK_RANGE = 10_000


def decode_block_number(value: Any) -> int:
    """Decode a ``0x`` prefixed hex block number, case-insensitive.

    :raise DecodeError:
        If the value is not a non-empty hex string with a ``0x`` prefix
    """
    if not isinstance(value, str) or len(value) < 3 or not is_0x_prefixed(value) or not is_hexstr(value):
        raise DecodeError(f"Not a hex block number: {value!r}")
    return int(value, 16)


def encode_block_number(block_number: int) -> str:
    return hex(block_number)


def split_block_range(start: int, end: int, max_range: int) -> list[BlockRange]:
    """Split an inclusive block range to chunks of at most ``max_range`` blocks.

    Chunk *k* covers ``[start + k * max_range, min(start + (k + 1) * max_range - 1, end)]``.

    Example:

    .. code-block:: python

        plan = split_block_range(0, 100_001, 10_000)
        assert len(plan) == 11
        assert plan[-1] == BlockRange(100_000, 100_001)

    :return:
        Contiguous, non-overlapping ranges in ascending order, covering ``[start, end]`` exactly
    """
    if max_range < 1:
        raise ValueError(f"max_range must be at least 1, got {max_range}")

    if not (0 <= start <= end):
        raise ValueError(f"Bad block range: {start} - {end}")

    plan = []
    cursor = start
    while cursor <= end:
        chunk_end = min(cursor + max_range - 1, end)
        plan.append(BlockRange(cursor, chunk_end))
        cursor = chunk_end + 1
    return plan


class BlockResolver:
    """Turn ``toBlock`` filter values into concrete block numbers.

    Resolving ``latest`` costs one rate limited ``eth_blockNumber`` call.
    """

    def __init__(self, upstream: UpstreamClient, rate_limiter: TokenBucketRateLimiter):
        self.upstream = upstream
        self.rate_limiter = rate_limiter

    async def resolve(self, to_block: Any) -> int:
        """Resolve a ``toBlock`` value.

        :param to_block:
            Hex block number or ``"latest"``

        :raise DecodeError:
            Not ``latest`` and not a hex number

        :raise UpstreamError:
            Could not read the latest block from the upstream
        """
        if to_block != LATEST_BLOCK:
            return decode_block_number(to_block)
        return await self.fetch_latest_block()

    async def fetch_latest_block(self) -> int:
        payload: RPCRequest = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": BLOCK_NUMBER,
            "params": [],
        }

        await self.rate_limiter.acquire()
        response = await self.upstream.send(payload)

        if not isinstance(response, dict):
            raise UpstreamError(f"Unexpected eth_blockNumber reply: {response!r}", request=payload, error=response)

        error = response.get("error")
        if error is not None:
            logger.error("eth_blockNumber failed:\n%s\nResponse error: %s", pformat(payload), error)
            raise UpstreamError(f"eth_blockNumber RPC error: {error}", request=payload, error=error)

        result = response.get("result")
        if result is None:
            raise UpstreamError(f"eth_blockNumber returned no result: {response}", request=payload, error=response)

        block_number = decode_block_number(result)
        logger.debug("Resolved latest block to %d", block_number)
        return block_number
