"""Tests for the signed SMS / voice gateway client."""
import json
from datetime import datetime

import httpx
import pytest

from services.sms_gateway import SmsGatewayClient, build_signature, encode_content, md5_upper

GOLDEN_SIGN = (
    "QTFFMzVDMTZFREM0QkNGMjA5RUYwN0Y2MjQwNTYxQzZGMTcwOTdCQzFGNjU0OURD"
    "M0MzOUYyMTYwQzg4RTNGNkVB"
)


class Gateway:
    """MockTransport handler recording requests."""

    def __init__(self, response=None, exc=None):
        self.response = response if response is not None else {"code": "1", "msg": "ok"}
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc:
            raise self.exc
        return httpx.Response(200, json=self.response)

    @property
    def bodies(self):
        return [json.loads(r.content) for r in self.requests]


def make_client(gateway, **kwargs):
    return SmsGatewayClient(
        "http://sms.example.com/", "A1", "S1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        clock=lambda: datetime(2024, 1, 1, 12, 0, 0),
        **kwargs,
    )


class TestSignature:

    def test_md5_upper(self):
        assert md5_upper("20240101120000") == "E35C16EDC4BCF209EF07F6240561C6F1"

    def test_golden_vector(self):
        assert build_signature("A1", "S1", "20240101120000", "13800000000", "test") == GOLDEN_SIGN

    def test_content_encoding(self):
        assert encode_content("a b/c~_.-中") == "a%20b%2Fc~_.-%E4%B8%AD"

    def test_payload_uses_encoded_content_in_sign(self):
        client = make_client(Gateway())
        payload = client.build_payload("13800000000", "test")
        assert payload == {
            "appid": "A1",
            "timestamp": "20240101120000",
            "mobiles": "13800000000",
            "content": "test",
            "sign": GOLDEN_SIGN,
        }


class TestSend:

    async def test_sms_success(self):
        gateway = Gateway()
        client = make_client(gateway)

        assert await client.send_sms(["13800000000", " 13900000000 "], "Level high")

        (request,) = gateway.requests
        assert request.url == "http://sms.example.com/sdk/send"
        body = gateway.bodies[0]
        assert body["mobiles"] == "13800000000,13900000000"
        assert body["content"] == "Level%20high"

    async def test_numeric_code_accepted(self):
        assert await make_client(Gateway({"code": 1})).send_sms("13800000000", "x")

    @pytest.mark.parametrize("response", [{"code": "0", "msg": "bad sign"}, {"msg": "no code"}, []])
    async def test_rejected(self, response):
        assert not await make_client(Gateway(response)).send_sms("13800000000", "x")

    async def test_timeout_is_failure(self):
        gateway = Gateway(exc=httpx.ReadTimeout("timed out"))
        assert not await make_client(gateway).send_sms("13800000000", "x")

    async def test_connect_error_is_failure(self):
        gateway = Gateway(exc=httpx.ConnectError("refused"))
        assert not await make_client(gateway).send_voice("13800000000", "x")

    async def test_http_error_status_is_failure(self):
        client = SmsGatewayClient(
            "http://sms.example.com", "A1", "S1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502))),
        )
        assert not await client.send_sms("13800000000", "x")

    async def test_voice_capped(self):
        gateway = Gateway()
        numbers = [f"1380000{i:04d}" for i in range(35)]

        assert await make_client(gateway).send_voice(numbers, "Alarm")

        (request,) = gateway.requests
        assert request.url.path == "/sdk/voiceSend"
        assert gateway.bodies[0]["mobiles"].split(",") == numbers[:30]

    async def test_not_configured(self):
        gateway = Gateway()
        client = SmsGatewayClient(
            "", "", "", client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        )
        assert not client.is_configured
        assert not await client.send_sms("13800000000", "x")
        assert gateway.requests == []

    async def test_no_numbers_or_content(self):
        gateway = Gateway()
        client = make_client(gateway)
        assert not await client.send_sms([" ", ""], "x")
        assert not await client.send_sms("13800000000", "")
        assert gateway.requests == []
