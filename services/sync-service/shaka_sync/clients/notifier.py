"""
Run-report notifier.

POSTs a JSON summary of a backfill / stats run to a configured webhook
(ops channel, mail relay). Delivery is best effort: a failed notification is
logged and never fails the run it describes.
"""
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ReportNotifier:
    def __init__(self, webhook_url: Optional[str], timeout: float = 5.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def start(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        if self.enabled:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def send(self, kind: str, summary: dict[str, Any]) -> bool:
        if self._http is None:
            return False
        try:
            resp = await self._http.post(
                self.webhook_url, json={"kind": kind, "summary": summary}
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Report notification failed (%s): %s", kind, exc)
            return False
        logger.debug("Report notification sent (%s)", kind)
        return True
