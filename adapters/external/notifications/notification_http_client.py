from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class NotificationHttpClient:
    gateway_url: str
    telegram_bot_token: str = ""

    @classmethod
    def from_settings(cls) -> "NotificationHttpClient":
        st = get_settings()
        return cls(
            gateway_url=(st.NOTIFICATION_GATEWAY_URL or "").rstrip("/"),
            telegram_bot_token=st.TELEGRAM_BOT_TOKEN or "",
        )

    async def _post(self, url: str, body: Dict[str, Any]) -> bool:
        async with httpx.AsyncClient(timeout=10.0) as cli:
            res = await cli.post(url, json=body)
        if res.status_code >= 400:
            logger.warning("notification POST %s failed: %s", url, res.status_code)
            return False
        return True

    async def send_push(self, *, user_address: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> bool:
        return await self._post(
            f"{self.gateway_url}/v1/push",
            {"user_address": user_address, "title": title, "body": body, "data": data or {}},
        )

    async def send_email(self, *, user_address: str, subject: str, body: str) -> bool:
        return await self._post(
            f"{self.gateway_url}/v1/email",
            {"user_address": user_address, "subject": subject, "body": body},
        )

    async def send_telegram(self, *, chat_id: str, text: str) -> bool:
        if not self.telegram_bot_token:
            logger.warning("TELEGRAM_BOT_TOKEN not configured; skipping telegram notification")
            return False
        return await self._post(
            f"https://api.telegram.org/bot{self.telegram_bot_token}/sendMessage",
            {"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
        )
