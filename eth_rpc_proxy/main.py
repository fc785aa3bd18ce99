"""Command line entry point.

Usage::

    export RPC_PROVIDER_URL=https://eth-mainnet.g.alchemy.com/v2/...
    eth-rpc-proxy --port 8545 --max-block-range 2000

Command line flags override environment variables and ``.env`` file values.
"""

import argparse
import dataclasses
import logging
import os

from dotenv import load_dotenv

from eth_rpc_proxy.config import ProxyConfig
from eth_rpc_proxy.server import run_server
from eth_rpc_proxy.utils import setup_console_logging

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="JSON-RPC proxy splitting large eth_getLogs block ranges and rate limiting upstream calls")
    parser.add_argument("--rpc-provider-url", help="Upstream JSON-RPC URL, overrides RPC_PROVIDER_URL")
    parser.add_argument("--host", help="Listen address, overrides RPC_HOST")
    parser.add_argument("--port", type=int, help="Listen port, overrides RPC_PORT")
    parser.add_argument("--max-block-range", type=int, help="Max eth_getLogs block span, overrides MAX_BLOCK_RANGE")
    parser.add_argument("--max-requests-per-minute", type=int, help="Upstream rate limit, overrides MAX_REQUESTS_PER_MINUTE")
    parser.add_argument("--safety-margin", type=float, help="Fraction of the rate limit to use, overrides RATE_LIMIT_SAFETY_MARGIN")
    parser.add_argument("--upstream-timeout", type=float, help="Seconds per upstream call, overrides UPSTREAM_TIMEOUT")
    return parser


def read_config(args: argparse.Namespace) -> ProxyConfig:
    """Combine environment variables and command line flags."""
    environ = dict(os.environ)
    if args.rpc_provider_url:
        environ["RPC_PROVIDER_URL"] = args.rpc_provider_url

    config = ProxyConfig.from_env(environ)

    overrides = {
        field: getattr(args, field)
        for field in ("host", "port", "max_block_range", "max_requests_per_minute", "safety_margin", "upstream_timeout")
        if getattr(args, field) is not None
    }
    return dataclasses.replace(config, **overrides)


def main(argv: list[str] | None = None):
    load_dotenv()
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_console_logging()

    try:
        config = read_config(args)
    except ValueError as e:
        parser.error(str(e))

    run_server(config)


if __name__ == "__main__":
    main()
