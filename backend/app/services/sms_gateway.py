"""SMS / voice gateway client.

Request signing:
  timestamp = local time "%Y%m%d%H%M%S"
  content   = percent-encoded UTF-8 text, used as-is in both sign and body
  sign      = base64(app_id + MD5(timestamp) + MD5(app_secret + mobiles + content))
              (MD5 as upper-case hex)

POST JSON {appid, timestamp, mobiles, content, sign} to /sdk/send (SMS) or
/sdk/voiceSend (voice). Response {code, msg}; code "1" is success.
Every failure, transport errors included, is reported as False.
"""
from __future__ import annotations

import base64
import hashlib
import logging
from datetime import datetime
from typing import Callable
from urllib.parse import quote

import httpx

from config import settings

logger = logging.getLogger("pumproom.sms")

SMS_PATH = "/sdk/send"
VOICE_PATH = "/sdk/voiceSend"


def md5_upper(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest().upper()


def encode_content(content: str) -> str:
    return quote(content, safe="")


def build_signature(app_id: str, app_secret: str, timestamp: str,
                    mobiles: str, encoded_content: str) -> str:
    raw = app_id + md5_upper(timestamp) + md5_upper(app_secret + mobiles + encoded_content)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


class SmsGatewayClient:

    def __init__(
        self,
        server_url: str | None = None,
        app_id: str | None = None,
        app_secret: str | None = None,
        *,
        timeout: float | None = None,
        voice_max_recipients: int | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.server_url = (settings.SMS_SERVER_URL if server_url is None else server_url).rstrip("/")
        self.app_id = settings.SMS_APP_ID if app_id is None else app_id
        self.app_secret = settings.SMS_APP_SECRET if app_secret is None else app_secret
        self.voice_max_recipients = (
            settings.VOICE_MAX_RECIPIENTS if voice_max_recipients is None else voice_max_recipients
        )
        self._client = client or httpx.AsyncClient(
            timeout=settings.SMS_TIMEOUT if timeout is None else timeout,
        )
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.server_url and self.app_id and self.app_secret)

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    async def send_sms(self, mobiles: str | list[str], content: str) -> bool:
        return await self._send(SMS_PATH, "SMS", _join(mobiles), content)

    async def send_voice(self, mobiles: str | list[str], content: str) -> bool:
        numbers = _split(mobiles)
        if len(numbers) > self.voice_max_recipients:
            logger.warning(
                "Voice call limited to %d numbers, dropping %d",
                self.voice_max_recipients, len(numbers) - self.voice_max_recipients,
            )
            numbers = numbers[: self.voice_max_recipients]
        return await self._send(VOICE_PATH, "Voice", ",".join(numbers), content)

    def build_payload(self, mobiles: str, content: str) -> dict[str, str]:
        timestamp = self._clock().strftime("%Y%m%d%H%M%S")
        encoded = encode_content(content)
        return {
            "appid": self.app_id,
            "timestamp": timestamp,
            "mobiles": mobiles,
            "content": encoded,
            "sign": build_signature(self.app_id, self.app_secret, timestamp, mobiles, encoded),
        }

    async def _send(self, path: str, kind: str, mobiles: str, content: str) -> bool:
        if not self.is_configured:
            logger.warning("%s gateway not configured (server url / app id / secret)", kind)
            return False
        if not mobiles:
            logger.warning("%s: no recipient numbers", kind)
            return False
        if not content:
            logger.warning("%s: empty content", kind)
            return False

        payload = self.build_payload(mobiles, content)
        try:
            resp = await self._client.post(f"{self.server_url}{path}", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException:
            logger.error("%s send timed out (%s)", kind, mobiles)
            return False
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("%s send failed: %s", kind, exc)
            return False

        code = str(data.get("code", "")) if isinstance(data, dict) else ""
        if code == "1":
            logger.info("%s sent to %s", kind, mobiles)
            return True
        msg = data.get("msg") if isinstance(data, dict) else data
        logger.error("%s rejected by gateway: code=%s msg=%s", kind, code, msg)
        return False


def _split(mobiles: str | list[str]) -> list[str]:
    if isinstance(mobiles, str):
        mobiles = mobiles.split(",")
    return [m.strip() for m in mobiles if m and m.strip()]


def _join(mobiles: str | list[str]) -> str:
    return ",".join(_split(mobiles))
