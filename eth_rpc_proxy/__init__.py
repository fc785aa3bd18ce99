"""eth_rpc_proxy package root.

JSON-RPC forwarding proxy that splits oversized ``eth_getLogs`` block ranges
into provider-compliant batches and paces all upstream calls with a token bucket.

- Entry point for the HTTP layer is :py:class:`eth_rpc_proxy.proxy.RPCProxy`
- See :py:mod:`eth_rpc_proxy.server` for the aiohttp application
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"eth-rpc-proxy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
