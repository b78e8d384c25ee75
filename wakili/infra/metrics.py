import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.webhook_events = None
            self.bookings = None
            self.escrow = None
            self.notifications = None
            self.http_5xx = None
            return

        self.webhook_events = Counter(
            "payment_callbacks_total",
            "Payment gateway callbacks processed by result.",
            ["result"],
            registry=self.registry,
        )
        self.bookings = Counter(
            "consultation_bookings_total",
            "Consultation booking lifecycle events.",
            ["action"],
            registry=self.registry,
        )
        self.escrow = Counter(
            "escrow_movements_total",
            "Escrow holds, releases and refunds.",
            ["action"],
            registry=self.registry,
        )
        self.notifications = Counter(
            "notifications_total",
            "Notification deliveries by outcome.",
            ["kind", "status"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )

    def record_webhook(self, result: str) -> None:
        if not self.enabled or self.webhook_events is None:
            return
        self.webhook_events.labels(result=result).inc()

    def record_booking(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.bookings is None:
            return
        if count <= 0:
            return
        self.bookings.labels(action=action).inc(count)

    def record_escrow(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.escrow is None:
            return
        if count <= 0:
            return
        self.escrow.labels(action=action).inc(count)

    def record_notification(self, kind: str, status: str) -> None:
        if not self.enabled or self.notifications is None:
            return
        self.notifications.labels(kind=kind, status=status).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
