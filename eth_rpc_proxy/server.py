"""aiohttp HTTP surface of the proxy.

Routes:

- ``POST /``: one JSON-RPC request. Proxy failures are answered with HTTP 500
  and a JSON-RPC ``-32603`` error, everything else with HTTP 200.

- ``POST /batch``: a JSON array of JSON-RPC requests, processed one by one.
  A body that is not an array gets HTTP 400 and a ``-32600`` error.
"""

import logging

import ujson
from aiohttp import web

from eth_rpc_proxy.config import ProxyConfig
from eth_rpc_proxy.exceptions import MalformedRequestError, ProxyError
from eth_rpc_proxy.proxy import RPCProxy, make_internal_error
from eth_rpc_proxy.rate_limiter import TokenBucketRateLimiter
from eth_rpc_proxy.types import PARSE_ERROR, make_error_response
from eth_rpc_proxy.upstream import AiohttpUpstream, UpstreamClient
from eth_rpc_proxy.utils import get_url_domain

logger = logging.getLogger(__name__)

#: Where the application keeps its :py:class:`RPCProxy`
PROXY_KEY = web.AppKey("proxy", RPCProxy)


async def _read_json(request: web.Request):
    try:
        return await request.json(loads=ujson.loads)
    except ValueError as e:
        raise web.HTTPBadRequest(
            text=ujson.dumps(make_error_response(None, PARSE_ERROR, "Parse error", data=str(e))),
            content_type="application/json",
        ) from e


async def handle_single_request(request: web.Request) -> web.Response:
    proxy = request.app[PROXY_KEY]
    payload = await _read_json(request)

    try:
        response = await proxy.process(payload)
    except ProxyError as e:
        logger.warning("Request failed, returning internal error: %s", e)
        return web.json_response(make_internal_error(payload, e), status=500)

    return web.json_response(response)


async def handle_batch_request(request: web.Request) -> web.Response:
    proxy = request.app[PROXY_KEY]
    payloads = await _read_json(request)

    try:
        responses = await proxy.handle_batch(payloads)
    except MalformedRequestError as e:
        error = {
            "error": {
                "code": e.code,
                "message": "Invalid Request",
                "data": str(e),
            }
        }
        return web.json_response(error, status=400)

    return web.json_response(responses)


async def _close_upstream(app: web.Application):
    upstream = app[PROXY_KEY].upstream

    if isinstance(upstream, AiohttpUpstream):
        logger.info("Upstream API calls made: %s", dict(upstream.api_call_counts))

    await upstream.close()


def create_app(
    config: ProxyConfig,
    upstream: UpstreamClient | None = None,
    rate_limiter: TokenBucketRateLimiter | None = None,
) -> web.Application:
    """Create the proxy web application.

    :param config:
        Proxy settings

    :param upstream:
        Override the upstream transport, used in tests.
        By default an :py:class:`AiohttpUpstream` for ``config.rpc_provider_url``.

    :param rate_limiter:
        Override the rate limiter, used in tests
    """
    if upstream is None:
        upstream = AiohttpUpstream(config.rpc_provider_url, timeout=config.upstream_timeout)

    if rate_limiter is None:
        rate_limiter = TokenBucketRateLimiter(
            max_requests_per_minute=config.max_requests_per_minute,
            safety_margin=config.safety_margin,
        )

    app = web.Application()
    app[PROXY_KEY] = RPCProxy(upstream, rate_limiter, max_block_range=config.max_block_range)
    app.router.add_post("/", handle_single_request)
    app.router.add_post("/batch", handle_batch_request)
    app.on_cleanup.append(_close_upstream)
    return app


def run_server(config: ProxyConfig):
    """Run the proxy until interrupted."""
    app = create_app(config)
    rate_limiter = app[PROXY_KEY].rate_limiter

    logger.info("RPC proxy running at http://%s:%d", config.host, config.port)
    logger.info("Forwarding requests to: %s", get_url_domain(config.rpc_provider_url))
    logger.info("Max block range for filter calls: %d", config.max_block_range)
    logger.info(
        "Upstream rate limit: %d requests/minute, using %d with safety margin %s",
        config.max_requests_per_minute,
        rate_limiter.capacity,
        config.safety_margin,
    )

    web.run_app(app, host=config.host, port=config.port, print=None)
