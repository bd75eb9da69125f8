"""Shared fixtures: a fake baking node and chain RPC behind httpx.MockTransport."""

import asyncio
import inspect
from collections.abc import Generator

import httpx
import pytest

from baconconsole.data.api import ApiGateway
from baconconsole.data.cache import get_cache
from baconconsole.data.chain import ChainDataProvider
from baconconsole.services.notifications import NotificationBus

NODE_URL = "http://node.test"
RPC_URL = "http://rpc.test"
HEAD = "/chains/main/blocks/head"

BAKER = "tz1bakerAddress000000000000000000000"

STATUS_CAN_BAKE = {
    "pkh": BAKER,
    "hash": "BLockHash",
    "level": 1500000,
    "cycle": 366,
    "cycleposition": 1024,
    "nbl": 1500100,
    "nbc": 366,
    "nbp": 0,
    "nel": 1500010,
    "nec": 366,
    "pbl": 1499000,
    "pbc": 365,
    "pbh": "BLprevBake",
    "pel": 1499990,
    "pec": 365,
    "peh": "ooPrevEndorse",
    "state": "canbake",
    "ts": 1630000000,
}


class FakeNode:
    """
    Routes requests by path (optionally host + path) to canned responses.

    A route value may be JSON (served with HTTP 200), a (status, body)
    tuple, an httpx.Response, an exception to raise, or a callable (sync or
    async) receiving the request and returning any of those.
    """

    def __init__(self):
        self.routes: dict[str, object] = {}
        self.requests: list[httpx.Request] = []

    def route(self, path: str, value: object) -> None:
        self.routes[path] = value

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path or str(r.url).startswith(path)]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host_key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        value = self.routes.get(host_key, self.routes.get(request.url.path))
        if value is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})

        if callable(value) and not isinstance(value, httpx.Response):
            value = value(request)
            if inspect.isawaitable(value):
                value = await value

        if isinstance(value, Exception):
            raise value
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, tuple):
            status, body = value
            if isinstance(body, (bytes, str)):
                return httpx.Response(status, content=body)
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=value)


def connect_error(request: httpx.Request) -> httpx.ConnectError:
    return httpx.ConnectError("Connection refused", request=request)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def clear_cache() -> Generator[None, None, None]:
    get_cache().clear()
    yield
    get_cache().clear()


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture()
def transport(node: FakeNode) -> httpx.MockTransport:
    return httpx.MockTransport(node.handle)


@pytest.fixture()
def api(transport: httpx.MockTransport) -> ApiGateway:
    return ApiGateway(NODE_URL, timeout=5.0, transport=transport)


@pytest.fixture()
def chain(transport: httpx.MockTransport) -> ChainDataProvider:
    return ChainDataProvider(RPC_URL, transport=transport)


@pytest.fixture()
def bus() -> NotificationBus:
    return NotificationBus(capacity=10)
