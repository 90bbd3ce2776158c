"""Operator alerts posted to a chat webhook (Discord/Slack compatible JSON)."""

import logging

import httpx

from shopflow.config import settings

logger = logging.getLogger(__name__)


class WebhookAlertNotifier:
    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.alert_webhook_url
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def notify(self, event_type: str, payload: dict) -> None:
        if not self.enabled:
            logger.debug("Alert %s skipped (no webhook configured)", event_type)
            return

        fields = ", ".join(f"{k}={v}" for k, v in payload.items())
        body = {
            "content": f"[{settings.store_name}] {event_type}: {fields}",
            "event": event_type,
            "payload": payload,
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=body)
                resp.raise_for_status()
        except Exception as exc:
            logger.warning("Alert %s not delivered: %s", event_type, exc)
