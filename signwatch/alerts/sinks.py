import json, asyncio, logging, os
from dataclasses import asdict
from typing import Dict, List, Optional

import httpx

from signwatch.alerts.base import AlertPayload, AlertSink
from signwatch.core.errors import DeliveryError

logger = logging.getLogger(__name__)


class StdoutSink:
    async def send(self, payload: AlertPayload) -> None:
        print("[ALERT]", json.dumps(asdict(payload), ensure_ascii=False, default=str))


class FileSink:
    """
    Satır başı JSON yazar. Bloklamamak için yazımı thread'e offload eder.
    """
    def __init__(self, path: str):
        self.path = path
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)

    def _append(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def send(self, payload: AlertPayload) -> None:
        line = json.dumps(asdict(payload), ensure_ascii=False, default=str)
        await asyncio.to_thread(self._append, line)


class WebhookSink:
    """
    JSON POST; retry_max deneme, her denemeden sonra backoff_ms bekler.
    Tüm denemeler biterse DeliveryError fırlatır.
    """
    def __init__(
        self,
        url: str,
        retry_max: int = 3,
        backoff_ms: int = 250,
        headers: Optional[Dict[str, str]] = None,
        timeout_sec: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.retry_max = max(1, retry_max)
        self.backoff_ms = backoff_ms
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout_sec
        self._client = client

    async def _post(self, client: httpx.AsyncClient, body: dict) -> None:
        last: Optional[Exception] = None
        for attempt in range(self.retry_max):
            try:
                resp = await client.post(self.url, headers=self.headers, json=body)
                resp.raise_for_status()
                return
            except httpx.HTTPError as e:
                last = e
                logger.debug("webhook attempt %d/%d failed: %s", attempt + 1, self.retry_max, e)
                await asyncio.sleep(self.backoff_ms / 1000.0)
        raise DeliveryError(f"webhook {self.url} failed after {self.retry_max} attempts: {last}", sink="webhook")

    async def send(self, payload: AlertPayload) -> None:
        body = json.loads(json.dumps(asdict(payload), default=str))
        if self._client is not None:
            await self._post(self._client, body)
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            await self._post(client, body)


def build_sinks(settings) -> List[AlertSink]:
    sinks: List[AlertSink] = []
    for name in settings.sinks():
        if name == "stdout":
            sinks.append(StdoutSink())
        elif name == "file":
            sinks.append(FileSink(settings.ALERT_FILE_PATH))
        elif name == "webhook":
            for url in settings.webhook_urls():
                sinks.append(WebhookSink(url, settings.ALERT_RETRY_MAX, settings.ALERT_RETRY_BACKOFF_MS))
        else:
            logger.warning("unknown alert sink %r ignored", name)
    return sinks
