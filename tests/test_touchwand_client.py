"""
Unit tests for TouchWandRestClient.

Requests are served by httpx.MockTransport, so no hub is needed.
"""
import json
import logging

import httpx
import pytest

from twbridge.touchwand_client import TouchWandRestClient


def make_client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TouchWandRestClient(http), http


@pytest.fixture
def recorder():
    """Handler that records every request and answers 200 with a fixed body."""
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, text="OK")

    handler.requests = requests
    return handler


class TestConnect:
    """Tests for the login call."""

    @pytest.mark.asyncio
    async def test_login_success(self, recorder):
        client, http = make_client(recorder)

        assert await client.connect("admin", "secret", "127.0.0.1", 8080) is True
        assert client.is_connected

        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/auth/login"
        assert request.url.port == 8080
        assert request.url.params["user"] == "admin"
        assert request.url.params["psw"] == "secret"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_login_unauthorized(self):
        client, http = make_client(lambda r: httpx.Response(401, text="Unauthorized"))

        assert await client.connect("admin", "wrong", "127.0.0.1", 80) is False
        assert not client.is_connected
        await http.aclose()

    @pytest.mark.asyncio
    async def test_login_unreachable_hub(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, http = make_client(handler)

        assert await client.connect("admin", "secret", "127.0.0.1", 80) is False
        await http.aclose()


class TestRequests:
    """Tests for GET/POST calls after login."""

    @pytest.mark.asyncio
    async def test_list_units_returns_raw_body(self):
        body = json.dumps([{"id": 1, "name": "Lamp", "type": "Switch"}])
        client, http = make_client(lambda r: httpx.Response(200, text=body))
        await client.connect("u", "p", "127.0.0.1", 80)

        assert await client.list_units() == body
        await http.aclose()

    @pytest.mark.asyncio
    async def test_get_unit_by_id_passes_id(self, recorder):
        client, http = make_client(recorder)
        await client.connect("u", "p", "127.0.0.1", 80)

        await client.get_unit_by_id("42")

        request = recorder.requests[-1]
        assert request.url.path == "/units/getUnitByID"
        assert request.url.params["id"] == "42"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_send_action_posts_json(self, recorder):
        client, http = make_client(recorder)
        await client.connect("u", "p", "127.0.0.1", 80)

        assert await client.send_action({"id": 3, "value": 255}) == "OK"

        request = recorder.requests[-1]
        assert request.method == "POST"
        assert request.url.path == "/units/action"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"id": 3, "value": 255}
        await http.aclose()

    @pytest.mark.asyncio
    async def test_command_helpers_build_payloads(self, recorder):
        client, http = make_client(recorder)
        await client.connect("u", "p", "127.0.0.1", 80)

        await client.switch_on_off("3", False)
        await client.shutter_up("4")
        await client.shutter_stop("4")
        await client.dimmer_position("5", 60)

        bodies = [json.loads(r.content) for r in recorder.requests[1:]]
        assert bodies == [
            {"id": 3, "value": 0},
            {"id": 4, "value": 255, "type": "height"},
            {"id": 4, "value": 0, "type": "stop"},
            {"id": 5, "value": 60},
        ]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, http = make_client(handler)
        client.host, client.port = "127.0.0.1", 80

        assert await client.list_units() is None
        assert await client.send_action({"id": 1, "value": 0}) is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_no_address_returns_none(self, recorder):
        client, http = make_client(recorder)

        assert await client.list_units() is None
        assert recorder.requests == []
        await http.aclose()


class TestLogging:

    @pytest.mark.asyncio
    async def test_login_password_stays_out_of_logs(self, recorder, caplog):
        import twbridge.main  # noqa: F401  (applies the app's logging setup)

        client, http = make_client(recorder)
        with caplog.at_level(logging.INFO):
            await client.connect("admin", "s3cretPW", "127.0.0.1", 80)

        assert recorder.requests[0].url.params["psw"] == "s3cretPW"
        assert "s3cretPW" not in caplog.text
        await http.aclose()
