from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import aiohttp

log = logging.getLogger("webhook")


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: Optional[dict]):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_report(self, payload: Dict[str, Any]) -> bool:
        if not self.enabled or not self.url:
            return False

        body = dict(payload)
        if self.secret:
            body["secret"] = self.secret
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=body, headers=self.headers) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
        except Exception as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
            return False
        return True
