"""Fire-and-forget user notifications.

Ledger services call `dispatch()` after their unit of work has committed. The
notifier hands the message to an rq worker (or just logs it); nothing raised
here may reach the caller.
"""
from __future__ import annotations
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID
import structlog
from redis import Redis
from rq import Queue

from bagami.config import settings

log = structlog.get_logger(__name__)

# Template kinds understood by bagami.jobs.deliver_notification
TRANSACTION = "transaction"
DIRECT_PAYMENT = "direct_payment"
WITHDRAWAL_REQUESTED = "withdrawal_requested"
WITHDRAWAL_APPROVED = "withdrawal_approved"
WITHDRAWAL_REJECTED = "withdrawal_rejected"


class Notifier(Protocol):
    def notify(self, user_id: UUID, kind: str, context: dict[str, Any]) -> None: ...


class QueueNotifier:
    """Enqueue onto rq; the worker renders and stores the notification."""

    job_path = "bagami.jobs.deliver_notification.deliver_notification"

    def __init__(self, queue: Queue):
        self.queue = queue

    @classmethod
    def from_settings(cls) -> "QueueNotifier":
        # Redis.from_url does not connect until the first command
        return cls(Queue(settings.notification_queue, connection=Redis.from_url(settings.redis_url)))

    def notify(self, user_id: UUID, kind: str, context: dict[str, Any]) -> None:
        self.queue.enqueue(self.job_path, str(user_id), kind, context, result_ttl=0)


class LogNotifier:
    def notify(self, user_id: UUID, kind: str, context: dict[str, Any]) -> None:
        log.info("notification", user_id=str(user_id), kind=kind, **context)


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    if settings.notification_backend == "rq":
        return QueueNotifier.from_settings()
    return LogNotifier()


def dispatch(notifier: Notifier | None, user_id: UUID, kind: str, context: dict[str, Any]) -> None:
    try:
        (notifier or get_notifier()).notify(user_id, kind, context)
    except Exception as e:
        log.warning("notification_dispatch_failed", user_id=str(user_id), kind=kind, error=str(e))


def current_notifier() -> Notifier:
    """FastAPI dependency; override it in tests to capture notifications."""
    return get_notifier()
