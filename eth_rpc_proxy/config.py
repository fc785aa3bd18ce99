"""Proxy configuration from environment variables.

Environment variables:

- ``RPC_PROVIDER_URL``: upstream JSON-RPC URL, required
- ``RPC_HOST``, ``RPC_PORT``: where the proxy listens, default ``localhost:8545``
- ``MAX_BLOCK_RANGE``: largest ``eth_getLogs`` block span the provider accepts, default 10,000
- ``MAX_REQUESTS_PER_MINUTE``: provider rate limit, default 2,000
- ``RATE_LIMIT_SAFETY_MARGIN``: fraction of the rate limit we use, default 0.9
- ``UPSTREAM_TIMEOUT``: seconds per upstream call, default 30

A ``.env`` file is read by the command line entry point,
see :py:mod:`eth_rpc_proxy.main`.
"""

import os
from dataclasses import dataclass
from typing import Mapping

from eth_rpc_proxy.block_range import DEFAULT_MAX_BLOCK_RANGE
from eth_rpc_proxy.rate_limiter import DEFAULT_MAX_REQUESTS_PER_MINUTE, DEFAULT_SAFETY_MARGIN
from eth_rpc_proxy.upstream import DEFAULT_UPSTREAM_TIMEOUT


def _read_number(environ: Mapping[str, str], name: str, default, parse):
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return parse(value)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} has bad value {value!r}: {e}") from e


@dataclass(slots=True, frozen=True)
class ProxyConfig:
    """Settings for one proxy process."""

    #: Upstream JSON-RPC endpoint. May contain an API key, do not log as is.
    rpc_provider_url: str

    host: str = "localhost"

    port: int = 8545

    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE

    max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE

    safety_margin: float = DEFAULT_SAFETY_MARGIN

    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT

    def __post_init__(self):
        if self.max_block_range < 1:
            raise ValueError(f"max_block_range must be at least 1, got {self.max_block_range}")
        if self.max_requests_per_minute < 1:
            raise ValueError(f"max_requests_per_minute must be at least 1, got {self.max_requests_per_minute}")
        if not (0 < self.safety_margin <= 1):
            raise ValueError(f"safety_margin must be in (0, 1], got {self.safety_margin}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProxyConfig":
        """Read the configuration from environment variables.

        :param environ:
            Defaults to :py:data:`os.environ`

        :raise ValueError:
            ``RPC_PROVIDER_URL`` is missing or a numeric variable does not parse
        """
        if environ is None:
            environ = os.environ

        rpc_provider_url = environ.get("RPC_PROVIDER_URL")
        if not rpc_provider_url:
            raise ValueError("Environment variable RPC_PROVIDER_URL is not set")

        return cls(
            rpc_provider_url=rpc_provider_url,
            host=environ.get("RPC_HOST") or "localhost",
            port=_read_number(environ, "RPC_PORT", 8545, int),
            max_block_range=_read_number(environ, "MAX_BLOCK_RANGE", DEFAULT_MAX_BLOCK_RANGE, int),
            max_requests_per_minute=_read_number(environ, "MAX_REQUESTS_PER_MINUTE", DEFAULT_MAX_REQUESTS_PER_MINUTE, int),
            safety_margin=_read_number(environ, "RATE_LIMIT_SAFETY_MARGIN", DEFAULT_SAFETY_MARGIN, float),
            upstream_timeout=_read_number(environ, "UPSTREAM_TIMEOUT", DEFAULT_UPSTREAM_TIMEOUT, float),
        )
