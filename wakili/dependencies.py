from fastapi import Request

from wakili.infra.clock import Clock, utc_now
from wakili.infra.db import get_db_session
from wakili.infra.notifications import LoggingNotificationSink, NotificationSink
from wakili.infra.verification_store import InMemoryVerificationStore, VerificationStore

__all__ = ["get_clock", "get_db_session", "get_notification_sink", "get_verification_store"]


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or utc_now


def get_notification_sink(request: Request) -> NotificationSink:
    sink = getattr(request.app.state, "notification_sink", None)
    if sink is None:
        sink = LoggingNotificationSink()
        request.app.state.notification_sink = sink
    return sink


def get_verification_store(request: Request) -> VerificationStore:
    store = getattr(request.app.state, "verification_store", None)
    if store is None:
        store = InMemoryVerificationStore()
        request.app.state.verification_store = store
    return store
