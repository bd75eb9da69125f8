"""Tests for ApiGateway response normalization."""

import json

import httpx
import pytest

from baconconsole.data.api import ApiGateway, BackendError, TransportError

from conftest import NODE_URL, connect_error


class TestApiGateway:
    """Every outcome is a value or an ApiError with a displayable message."""

    @pytest.mark.asyncio
    async def test_ok_returns_parsed_body(self, node, api):
        node.route("/api/status", {"level": 10})
        assert await api.get("/api/status") == {"level": 10}

    @pytest.mark.asyncio
    async def test_error_envelope_message_is_raised(self, node, api):
        node.route("/api/settings/", (400, {"error": "bad request"}))

        with pytest.raises(BackendError) as exc_info:
            await api.get("/api/settings/")

        assert str(exc_info.value) == "bad request"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_non_200_without_envelope(self, node, api):
        node.route("/api/status", (502, "<html>Bad Gateway</html>"))

        with pytest.raises(BackendError, match=r"HTTP 502"):
            await api.get("/api/status")

    @pytest.mark.asyncio
    async def test_bare_envelope_on_200_is_an_error(self, node, api):
        node.route("/api/wizard/finish", {"error": "signer not ready"})

        with pytest.raises(BackendError, match="signer not ready"):
            await api.get("/api/wizard/finish")

    @pytest.mark.asyncio
    async def test_error_field_next_to_data_is_not_an_error(self, node, api):
        node.route("/api/status", {"level": 5, "error": "low balance"})
        assert await api.get("/api/status") == {"level": 5, "error": "low balance"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, node, api):
        node.route("/api/status", (200, "not json"))

        with pytest.raises(BackendError, match="Invalid JSON response"):
            await api.get("/api/status")

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, node, api):
        node.route("/api/settings/bakersettings", httpx.Response(200))
        assert await api.post("/api/settings/bakersettings", {"bakerfee": 5}) is None

    @pytest.mark.asyncio
    async def test_transport_failure(self, node, api):
        node.route("/api/status", connect_error)

        with pytest.raises(TransportError) as exc_info:
            await api.get("/api/status")

        assert "Connection refused" in str(exc_info.value)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, node, api):
        node.route("/api/payouts/sendpayouts", {})
        await api.post("/api/payouts/sendpayouts", {"cycle": 300})

        request = node.calls("/api/payouts/sendpayouts")[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"cycle": 300}

    @pytest.mark.asyncio
    async def test_query_params(self, node, api):
        node.route("/api/payouts/cycledetail", {"metadata": {}})
        await api.get("/api/payouts/cycledetail", params={"c": 42})

        assert node.calls("/api/payouts/cycledetail")[0].url.params["c"] == "42"

    def test_url_for(self):
        gateway = ApiGateway(NODE_URL + "/")
        assert gateway.url_for("api/status") == f"{NODE_URL}/api/status"
        assert gateway.url_for("https://other.test/x") == "https://other.test/x"
