"""Tests for the web projection via FastAPI TestClient."""

import time

from fastapi.testclient import TestClient

from baconconsole.data.api import ApiGateway
from baconconsole.data.chain import ChainDataProvider
from baconconsole.services.console import Console
from baconconsole.services.notifications import NotificationBus
from baconconsole.web.app import create_app

from conftest import BAKER, HEAD, NODE_URL, RPC_URL, STATUS_CAN_BAKE


def make_console(node, transport) -> Console:
    node.route("/api/status", STATUS_CAN_BAKE)
    node.route(f"{HEAD}/context/delegates/{BAKER}", {"balance": "1000", "frozen_balance": "0"})
    return Console(
        api=ApiGateway(NODE_URL, transport=transport),
        chain=ChainDataProvider(RPC_URL, transport=transport),
        bus=NotificationBus(capacity=10),
        status_interval=0.05,
    )


def wait_until_connected(client: TestClient, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        state = client.get("/api/console").json()
        if state["connected"]:
            return state
        time.sleep(0.01)
    raise AssertionError("console never connected")


class TestRoutes:
    def test_console_state(self, node, transport):
        bacon = make_console(node, transport)

        with TestClient(create_app(bacon)) as client:
            state = wait_until_connected(client)

            assert state["view"] == "dashboard"
            assert state["status"]["delegate"] == BAKER
            assert state["polling"] is True

        assert not bacon.poller.running

    def test_notifications(self, node, transport):
        bacon = make_console(node, transport)
        note = bacon.bus.error("Status Error", "Unable to fetch node status")

        with TestClient(create_app(bacon)) as client:
            notes = client.get("/api/notifications").json()
            assert [n["id"] for n in notes] == [note.id]
            assert notes[0]["severity"] == "danger"

            assert client.delete(f"/api/notifications/{note.id}").status_code == 200
            assert client.delete(f"/api/notifications/{note.id}").status_code == 404
            assert client.get("/api/notifications").json() == []

    def test_health(self, node, transport):
        bacon = make_console(node, transport)

        with TestClient(create_app(bacon)) as client:
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_index(self, node, transport):
        with TestClient(create_app(make_console(node, transport))) as client:
            response = client.get("/")

        assert response.status_code == 200
        assert "Bacon Console" in response.text

    def test_notification_text_is_not_rendered_as_html(self, node, transport):
        bacon = make_console(node, transport)
        bacon.bus.error("Delegate Info Error", '<img src=x onerror="alert(1)">')

        with TestClient(create_app(bacon)) as client:
            page = client.get("/").text
            notes = client.get("/api/notifications").json()

        # The payload is served as data and the page only assigns it as text
        assert notes[0]["message"] == '<img src=x onerror="alert(1)">'
        assert "innerHTML" not in page
        assert "message.textContent = t.message" in page
        assert "title.textContent = t.title" in page
