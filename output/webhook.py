# -- coding: utf-8 --

import asyncio
import json
import logging
import mimetypes
import os
from datetime import datetime, timezone

import aiohttp

from core.config.settings import WebhookSettings
from core.contracts import CaptureSuccess
from output.manager import SinkError

L = logging.getLogger("snap_runtime.output.webhook")

DEFAULT_MESSAGE_TEMPLATE = "New screenshot taken at {time}"


def render_message(template: str, when: datetime | None = None) -> str:
    ref = (when or datetime.now(timezone.utc)).astimezone()
    stamp = ref.strftime("%Y-%m-%d %H:%M:%S")
    return (template or DEFAULT_MESSAGE_TEMPLATE).replace("{time}", stamp, 1)


def build_form(result: CaptureSuccess, settings: WebhookSettings) -> aiohttp.FormData:
    payload = {
        "username": settings.username,
        "content": render_message(settings.message_template),
    }
    filename = os.path.basename(result.image_path) or "snapshot.png"
    content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    form = aiohttp.FormData()
    form.add_field(
        "payload_json", json.dumps(payload), content_type="application/json"
    )
    form.add_field(
        "file",
        result.image_bytes or b"",
        filename=filename,
        content_type=content_type,
    )
    return form


def _redact(url: str) -> str:
    return url[:30] + "..." if len(url) > 30 else url


class WebhookSink:
    """Post the snapshot as multipart form data (Discord webhook layout)."""

    name = "webhook"

    def __init__(self, settings: WebhookSettings):
        self.settings = settings

    async def send(self, result: CaptureSuccess) -> None:
        url = self.settings.url
        if not url:
            raise SinkError("no webhook URL configured")
        if not result.image_bytes:
            raise SinkError("snapshot bytes already released")
        L.info("Posting snapshot to webhook %s", _redact(url))
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=build_form(result, self.settings)) as resp:
                    if resp.status // 100 != 2:
                        body = (await resp.text())[:200]
                        raise SinkError(f"webhook returned HTTP {resp.status}: {body}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SinkError(f"webhook post failed: {e}") from e
        L.info("Snapshot delivered to webhook")


__all__ = ["DEFAULT_MESSAGE_TEMPLATE", "WebhookSink", "build_form", "render_message"]
