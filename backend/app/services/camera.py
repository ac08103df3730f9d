"""Camera snapshot client for alarm e-mail attachments.

Site flow:
  1. POST {service}/api/snapshot/site with every configured camera
  2. for each camera the batch call did not deliver, in order:
     a. GET http://{ip}/ISAPI/Streaming/channels/101/picture (basic auth)
     b. POST /api/stream/config -> POST /api/stream/start -> wait
        -> GET /api/stream/snapshot
     c. POST /api/snapshot/direct
A camera that fails every strategy is reported as failed; the other
cameras of the site are unaffected.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from config import settings
from models.site import Site

logger = logging.getLogger("pumproom.camera")

DEFAULT_USERNAME = "admin"
STREAM_DEFAULT_PASSWORD = "admin123"
ISAPI_SNAPSHOT_PATH = "/ISAPI/Streaming/channels/101/picture"


class SnapshotError(Exception):
    """One snapshot strategy failed for one camera."""


@dataclass(frozen=True)
class CameraConfig:
    camera_type: str  # "internal" / "global"
    ip: str
    username: str = DEFAULT_USERNAME
    password: str = ""
    channel: int = 1

    def as_request(self) -> dict:
        return {
            "camera_type": self.camera_type,
            "ip": self.ip,
            "username": self.username,
            "password": self.password,
            "channel": self.channel,
        }


@dataclass
class CameraSnapshot:
    camera_type: str
    camera_ip: str
    success: bool
    image_data: bytes | None = None
    error: str | None = None
    source: str | None = None
    taken_at: datetime = field(default_factory=datetime.now)

    @property
    def size_bytes(self) -> int:
        return len(self.image_data or b"")

    @property
    def filename(self) -> str:
        return f"{self.camera_type}_camera_{self.camera_ip}_{self.taken_at:%Y%m%d_%H%M%S}.jpg"


@dataclass
class SiteSnapshotResult:
    site_id: int
    snapshots: list[CameraSnapshot] = field(default_factory=list)

    @property
    def total_cameras(self) -> int:
        return len(self.snapshots)

    @property
    def successful_snapshots(self) -> int:
        return sum(1 for s in self.snapshots if s.success)

    @property
    def failed_snapshots(self) -> int:
        return self.total_cameras - self.successful_snapshots

    @property
    def images(self) -> list[CameraSnapshot]:
        return [s for s in self.snapshots if s.success and s.image_data]


def cameras_for(site: Site) -> list[CameraConfig]:
    cameras = []
    for camera_type, ip, username, password in (
        ("internal", site.internal_camera_ip, site.internal_camera_username, site.internal_camera_password),
        ("global", site.global_camera_ip, site.global_camera_username, site.global_camera_password),
    ):
        if ip and ip.strip():
            cameras.append(CameraConfig(
                camera_type=camera_type,
                ip=ip.strip(),
                username=username or DEFAULT_USERNAME,
                password=password or "",
            ))
    return cameras


class CameraSnapshotClient:

    def __init__(
        self,
        service_url: str | None = None,
        *,
        timeout: float | None = None,
        site_timeout: float | None = None,
        stream_warmup: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.service_url = (settings.CAMERA_SERVICE_URL if service_url is None else service_url).rstrip("/")
        self.timeout = settings.CAMERA_TIMEOUT if timeout is None else timeout
        self.site_timeout = settings.CAMERA_SITE_TIMEOUT if site_timeout is None else site_timeout
        self.stream_warmup = settings.CAMERA_STREAM_WARMUP if stream_warmup is None else stream_warmup
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_site_snapshots(self, site: Site) -> SiteSnapshotResult:
        result = SiteSnapshotResult(site_id=site.id)
        cameras = cameras_for(site)
        if not cameras:
            return result

        delivered = await self._batch(site.id, cameras)
        for camera in cameras:
            snapshot = delivered.get(camera.ip)
            if snapshot is None or not snapshot.success:
                snapshot = await self.snapshot_camera(camera)
            result.snapshots.append(snapshot)

        logger.info(
            "Site %d snapshots: %d/%d ok",
            site.id, result.successful_snapshots, result.total_cameras,
        )
        return result

    async def snapshot_camera(self, camera: CameraConfig) -> CameraSnapshot:
        errors = []
        for source, strategy in (
            ("isapi", self._isapi_picture),
            ("stream", self._stream_snapshot),
            ("direct", self._direct_snapshot),
        ):
            try:
                image = await strategy(camera)
            except (SnapshotError, httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.debug("Camera %s: %s strategy failed: %s", camera.ip, source, exc)
                errors.append(f"{source}: {exc}")
                continue
            logger.info("Camera %s: snapshot via %s (%d bytes)", camera.ip, source, len(image))
            return CameraSnapshot(camera.camera_type, camera.ip, True, image, source=source)

        logger.warning("Camera %s: all snapshot strategies failed", camera.ip)
        return CameraSnapshot(camera.camera_type, camera.ip, False, error="; ".join(errors))

    # ------------------------------------------------------------------
    async def _batch(self, site_id: int, cameras: list[CameraConfig]) -> dict[str, CameraSnapshot]:
        body = {"site_id": site_id, "cameras": [c.as_request() for c in cameras]}
        try:
            resp = await self._client.post(
                f"{self.service_url}/api/snapshot/site", json=body, timeout=self.site_timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Site %d batch snapshot failed: %s", site_id, exc)
            return {}

        delivered: dict[str, CameraSnapshot] = {}
        for item in data.get("snapshots") or []:
            ip = item.get("camera_ip")
            if not ip:
                continue
            image = _decode_image(item.get("image_data")) if item.get("success") else None
            delivered[ip] = CameraSnapshot(
                camera_type=item.get("camera_type") or "",
                camera_ip=ip,
                success=image is not None,
                image_data=image,
                error=item.get("error"),
                source="site",
            )
        return delivered

    async def _isapi_picture(self, camera: CameraConfig) -> bytes:
        resp = await self._client.get(
            f"http://{camera.ip}{ISAPI_SNAPSHOT_PATH}",
            auth=httpx.BasicAuth(camera.username, camera.password),
        )
        return _image_or_raise(resp)

    async def _stream_snapshot(self, camera: CameraConfig) -> bytes:
        resp = await self._client.post(f"{self.service_url}/api/stream/config", json={
            "ip": camera.ip,
            "username": camera.username or DEFAULT_USERNAME,
            "password": camera.password or STREAM_DEFAULT_PASSWORD,
        })
        if not resp.is_success:
            raise SnapshotError(f"stream config HTTP {resp.status_code}")

        resp = await self._client.post(f"{self.service_url}/api/stream/start")
        if not resp.is_success:
            raise SnapshotError(f"stream start HTTP {resp.status_code}")

        await asyncio.sleep(self.stream_warmup)
        resp = await self._client.get(f"{self.service_url}/api/stream/snapshot")
        return _image_or_raise(resp)

    async def _direct_snapshot(self, camera: CameraConfig) -> bytes:
        resp = await self._client.post(f"{self.service_url}/api/snapshot/direct", json={
            "ip": camera.ip,
            "username": camera.username or DEFAULT_USERNAME,
            "password": camera.password or STREAM_DEFAULT_PASSWORD,
            "channel": camera.channel,
        })
        return _image_or_raise(resp)


def _image_or_raise(resp: httpx.Response) -> bytes:
    if not resp.is_success:
        raise SnapshotError(f"HTTP {resp.status_code}")
    if not resp.content:
        raise SnapshotError("empty image")
    return resp.content


def _decode_image(data: str | None) -> bytes | None:
    if not data:
        return None
    try:
        image = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None
    return image or None
