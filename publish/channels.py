from __future__ import annotations

from typing import Optional, Protocol

import httpx

from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class DeliveryError(Exception):
    """A message could not be delivered to one chat."""


class Channel(Protocol):
    name: str

    def send(self, chat_id: str, text: str) -> None: ...


class TelegramChannel:
    """Bot API sendMessage over httpx."""

    name = "telegram"

    def __init__(self, token: str, *, api_base: str = "https://api.telegram.org", timeout: float = 30.0):
        self._endpoint = f"{api_base.rstrip('/')}/bot{token}/sendMessage"
        self._timeout = timeout

    def send(self, chat_id: str, text: str) -> None:
        try:
            resp = httpx.post(
                self._endpoint,
                json={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"telegram transport error: {exc}") from exc
        if resp.status_code >= 400:
            raise DeliveryError(f"telegram HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if body.get("ok") is False:
            raise DeliveryError(f"telegram rejected message: {body.get('description')}")


class LogChannel:
    """Used when no bot token is configured; only logs."""

    name = "log"

    def send(self, chat_id: str, text: str) -> None:
        logger.info("notify.channel.log", extra={"chat_id": chat_id, "text": text})


def build_channel(settings: Optional[Settings] = None) -> Channel:
    config = settings or get_settings()
    if config.telegram_bot_token is None:
        return LogChannel()
    return TelegramChannel(
        config.telegram_bot_token.get_secret_value(),
        api_base=config.telegram_api_base,
        timeout=float(config.http_timeout_seconds),
    )
