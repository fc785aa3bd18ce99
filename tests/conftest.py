"""Shared fixtures: an in-memory upstream provider and a fake clock."""

import asyncio

import pytest

from eth_rpc_proxy.exceptions import UpstreamError
from eth_rpc_proxy.rate_limiter import TokenBucketRateLimiter


def make_logs(start: int, end: int, log_every: int) -> list[dict]:
    """Log entries an ideal provider returns for blocks ``[start, end]``, in block order."""
    first = start + (-start % log_every)
    return [
        {
            "blockNumber": hex(block_number),
            "logIndex": "0x0",
            "address": "0x6b175474e89094c44da98b954eedeac495271d0f",
        }
        for block_number in range(first, end + 1, log_every)
    ]


class FakeUpstream:
    """In-memory JSON-RPC provider.

    - Serves one log entry per ``log_every`` blocks for ``eth_getLogs``
    - Returns an error envelope for ``eth_getLogs`` ranges containing ``error_block``
    - Raises a transport failure for ranges containing ``broken_block``
    - Answers ``eth_blockNumber`` with the queued ``block_number_replies`` first, as is
    """

    def __init__(self, latest_block: int = 12345, log_every: int = 1000):
        self.latest_block_hex = hex(latest_block)
        self.log_every = log_every
        self.error_block = None
        self.broken_block = None
        self.block_number_replies = []
        self.calls = []
        self.closed = False

    def _decode(self, value: str) -> int:
        if value == "latest":
            return int(self.latest_block_hex, 16)
        if value == "earliest":
            return 0
        return int(value, 16)

    async def send(self, payload):
        self.calls.append(payload)
        # Suspension point, like a real network call
        await asyncio.sleep(0)

        request_id = payload.get("id")
        method = payload.get("method")

        if method == "eth_blockNumber":
            if self.block_number_replies:
                return self.block_number_replies.pop(0)
            return {"jsonrpc": "2.0", "id": request_id, "result": self.latest_block_hex}

        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": request_id, "result": "0x1"}

        if method == "eth_getLogs":
            log_filter = payload["params"][0]
            start = self._decode(log_filter["fromBlock"])
            end = self._decode(log_filter["toBlock"])

            if self.broken_block is not None and start <= self.broken_block <= end:
                raise UpstreamError("Upstream request failed: ServerDisconnectedError", request=payload, error="Server disconnected")

            if self.error_block is not None and start <= self.error_block <= end:
                return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32005, "message": "limit exceeded"}}

            return {"jsonrpc": "2.0", "id": request_id, "result": make_logs(start, end, self.log_every)}

        return {"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": "Method not found"}}

    async def close(self):
        self.closed = True

    def get_log_calls(self) -> list[tuple[str, str]]:
        return [(c["params"][0]["fromBlock"], c["params"][0]["toBlock"]) for c in self.calls if c.get("method") == "eth_getLogs"]


class FakeClock:
    """Clock the rate limiter sleeps on. Sleeping moves time forward instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture()
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def rate_limiter(fake_clock) -> TokenBucketRateLimiter:
    """Rate limiter with a frozen clock, so used tokens can be counted."""
    return TokenBucketRateLimiter(
        max_requests_per_minute=1000,
        safety_margin=1.0,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
