"""Best-effort notification channel for engine state transitions.

Events are published after the transaction that produced them commits.
Delivery failures are logged and never affect the operation itself. The
webhook subscriber hands each event to a background worker.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import Settings, settings as default_settings
from affiliate_engine.storage.models import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class EngineEvent:
    """A committed state transition."""
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation."""
        return {
            "event": self.name,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": {key: _jsonable(value) for key, value in self.payload.items()},
        }


Subscriber = Callable[[EngineEvent], None]


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class EventPublisher:
    """In-process pub-sub. Subscribers are called synchronously."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, name: str, **payload: Any) -> EngineEvent:
        """Deliver an event to every subscriber."""
        event = EngineEvent(name=name, payload=payload)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("event_subscriber_failed", event_name=name)
        return event


class WebhookNotifier:
    """Subscriber that POSTs events as JSON to a configured URL.

    Deliveries run on a single background worker in publish order, so a slow
    or unreachable endpoint never holds up the operation that published.
    """

    def __init__(
        self,
        url: str | None = None,
        client: httpx.Client | None = None,
        settings: Settings | None = None,
    ):
        cfg = settings or default_settings
        self.url = url or cfg.webhook_url
        if not self.url:
            raise ValueError("Webhook URL is not configured")
        self.client = client or httpx.Client(timeout=cfg.webhook_timeout_seconds)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def __call__(self, event: EngineEvent) -> None:
        future = self._executor.submit(self._deliver_logged, event)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def deliver(self, event: EngineEvent) -> None:
        """POST one event now, retrying transient failures."""
        self._post(event.to_dict())
        logger.debug("webhook_delivered", event_name=event.name, url=self.url)

    def _deliver_logged(self, event: EngineEvent) -> None:
        try:
            self.deliver(event)
        except Exception:
            logger.exception("webhook_delivery_failed", event_name=event.name, url=self.url)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _post(self, body: dict[str, Any]) -> None:
        response = self.client.post(self.url, json=body)
        response.raise_for_status()

    def flush(self, timeout: float | None = None) -> None:
        """Wait for queued deliveries to finish."""
        with self._lock:
            pending = list(self._pending)
        wait_futures(pending, timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.client.close()
