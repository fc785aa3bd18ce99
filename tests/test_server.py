"""HTTP surface of the proxy."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from conftest import make_logs

from eth_rpc_proxy.config import ProxyConfig
from eth_rpc_proxy.server import create_app
from eth_rpc_proxy.upstream import AiohttpUpstream


@pytest.fixture()
def config() -> ProxyConfig:
    return ProxyConfig(rpc_provider_url="http://localhost:1/never-used", max_block_range=10_000)


@pytest.fixture()
def app(config, fake_upstream, rate_limiter) -> web.Application:
    return create_app(config, upstream=fake_upstream, rate_limiter=rate_limiter)


@pytest.mark.asyncio
async def test_single_passthrough(app):
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []})
        assert resp.status == 200
        assert await resp.json() == {"jsonrpc": "2.0", "id": 1, "result": "0x1"}


@pytest.mark.asyncio
async def test_single_batched(app, fake_upstream):
    payload = {
        "jsonrpc": "2.0",
        "id": 11,
        "method": "eth_getLogs",
        "params": [{"fromBlock": "0x0", "toBlock": "latest"}],
    }
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/", json=payload)
        assert resp.status == 200
        data = await resp.json()

    assert data["id"] == 11
    assert data["result"] == make_logs(0, 12_345, fake_upstream.log_every)


@pytest.mark.asyncio
async def test_single_failure_is_http_500(app, fake_upstream):
    fake_upstream.broken_block = 5
    payload = {
        "jsonrpc": "2.0",
        "id": 12,
        "method": "eth_getLogs",
        "params": [{"fromBlock": "0x0", "toBlock": "0x186A1"}],
    }
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/", json=payload)
        assert resp.status == 500
        data = await resp.json()

    assert data["id"] == 12
    assert data["error"]["code"] == -32603
    assert data["error"]["message"] == "Internal error"


@pytest.mark.asyncio
async def test_single_not_json(app, fake_upstream):
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/", data=b"{not json", headers={"content-type": "application/json"})
        assert resp.status == 400
        data = await resp.json()

    assert data["error"]["code"] == -32700
    assert fake_upstream.calls == []


@pytest.mark.asyncio
async def test_batch_mixed_results(app, fake_upstream):
    """First element fails in an upstream leg, second succeeds."""
    fake_upstream.error_block = 20_000
    payloads = [
        {"jsonrpc": "2.0", "id": 1, "method": "eth_getLogs", "params": [{"fromBlock": "0x0", "toBlock": "0x186A1"}]},
        {"jsonrpc": "2.0", "id": 2, "method": "eth_blockNumber", "params": []},
    ]
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/batch", json=payloads)
        assert resp.status == 200
        data = await resp.json()

    assert data[0]["id"] == 1
    assert data[0]["error"]["code"] == -32603
    assert data[1] == {"jsonrpc": "2.0", "id": 2, "result": "0x3039"}


@pytest.mark.asyncio
async def test_batch_not_array(app, fake_upstream):
    """Object instead of array is rejected before any upstream call."""
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/batch", json={})
        assert resp.status == 400
        data = await resp.json()

    assert data == {"error": {"code": -32600, "message": "Invalid Request", "data": "Expected array of RPC calls"}}
    assert fake_upstream.calls == []


@pytest.mark.asyncio
async def test_end_to_end_with_http_upstream(rate_limiter):
    """Proxy talking to a provider over HTTP, provider enforcing a 10k block window."""
    seen_ranges = []

    async def provider(request: web.Request) -> web.Response:
        payload = await request.json()
        if payload["method"] == "eth_blockNumber":
            return web.json_response({"jsonrpc": "2.0", "id": payload["id"], "result": "0x61a8"})

        log_filter = payload["params"][0]
        start = int(log_filter["fromBlock"], 16)
        end = int(log_filter["toBlock"], 16)
        seen_ranges.append((start, end))
        if end - start >= 10_000:
            return web.json_response({"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -32005, "message": "query exceeds max block range 10000"}})
        return web.json_response({"jsonrpc": "2.0", "id": payload["id"], "result": make_logs(start, end, 5_000)})

    provider_app = web.Application()
    provider_app.router.add_post("/", provider)

    async with TestServer(provider_app) as provider_server:
        config = ProxyConfig(rpc_provider_url=str(provider_server.make_url("/")), max_block_range=10_000)
        upstream = AiohttpUpstream(config.rpc_provider_url, timeout=5)
        app = create_app(config, upstream=upstream, rate_limiter=rate_limiter)

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/", json={
                "jsonrpc": "2.0",
                "id": "q",
                "method": "eth_getLogs",
                "params": [{"fromBlock": "0x0", "toBlock": "latest"}],
            })
            assert resp.status == 200
            data = await resp.json()

        # Session was closed on application cleanup
        assert upstream.session is None

    assert data["id"] == "q"
    assert data["result"] == make_logs(0, 25_000, 5_000)
    assert seen_ranges == [(0, 9_999), (10_000, 19_999), (20_000, 25_000)]
    assert upstream.api_call_counts["total"] == 4
    assert upstream.api_call_counts["eth_getLogs"] == 3


@pytest.mark.asyncio
async def test_upstream_closed_on_cleanup(app, fake_upstream):
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []})
        assert resp.status == 200

    assert fake_upstream.closed
