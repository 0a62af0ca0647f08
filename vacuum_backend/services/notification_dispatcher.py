"""
Event & notification dispatcher.

emit() is called right after a committed transition (maintenance required,
machine offline, system error). It never blocks the caller on delivery:

1. Rate limit per "{type}:{machine_id}" (sliding window, default 10/hour).
   Suppressed events are logged and not recorded.
2. Record a pending NotificationEvent.
3. Deliver on a background task with bounded exponential backoff (tenacity).
   Exhausted retries leave the event failed with the last error.

retry_failed() runs periodically and re-attempts failed events until their
total attempts reach NOTIFICATION_MAX_TOTAL_ATTEMPTS.
"""
import asyncio
import logging
from typing import Optional, Set

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from vacuum_backend.config import config
from vacuum_backend.exceptions import NotificationDeliveryError
from vacuum_backend.models.enums import NotificationType, DeliveryStatus
from vacuum_backend.models.notification import NotificationEvent, NotificationStats
from vacuum_backend.repositories.notification_repository import NotificationRepository
from vacuum_backend.utils.date_formatter import Clock, now_local, format_datetime
from vacuum_backend.utils.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

MESSAGE_PREFIX = {
    NotificationType.MAINTENANCE_REQUIRED: "🔧 MAINTENANCE REQUIRED",
    NotificationType.MACHINE_OFFLINE: "📴 MACHINE OFFLINE",
    NotificationType.SYSTEM_ERROR: "⚠️ SYSTEM ERROR",
}


class NotificationDispatcher:
    """
    Records alert events and delivers them through a channel.

    Attributes:
        repository: NotificationRepository holding every recorded event
        channel: Object with async send(message, recipient=None)
        rate_limiter: Per type+machine sliding window
    """

    def __init__(
        self,
        repository: NotificationRepository,
        channel,
        clock: Clock = now_local,
        max_per_hour: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_max_wait_seconds: Optional[float] = None,
        max_total_attempts: Optional[int] = None
    ):
        self.repository = repository
        self.channel = channel
        self.clock = clock
        self.retry_attempts = retry_attempts or config.NOTIFICATION_RETRY_ATTEMPTS
        self.retry_max_wait_seconds = (
            retry_max_wait_seconds
            if retry_max_wait_seconds is not None
            else config.NOTIFICATION_RETRY_MAX_WAIT_SECONDS
        )
        self.max_total_attempts = max_total_attempts or config.NOTIFICATION_MAX_TOTAL_ATTEMPTS
        self.rate_limiter = SlidingWindowRateLimiter(
            max_events=max_per_hour or config.NOTIFICATION_MAX_PER_HOUR,
            window_seconds=3600,
            clock=clock
        )
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    # ==================== LIFECYCLE ====================

    def start(self) -> None:
        self._running = True
        logger.info("✅ Notification dispatcher started")

    async def stop(self, timeout_seconds: float = 10.0) -> None:
        """
        Wait for in-flight deliveries, then cancel whatever is left.
        """
        self._running = False
        if self._tasks:
            done, pending = await asyncio.wait(set(self._tasks), timeout=timeout_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"⚠️ Cancelled {len(pending)} notification deliveries on shutdown")
        logger.info("Notification dispatcher stopped")

    async def drain(self) -> None:
        """Wait until every scheduled delivery finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._running

    # ==================== EMIT ====================

    async def emit(
        self,
        notification_type: NotificationType,
        machine_id: Optional[str],
        message: str
    ) -> Optional[NotificationEvent]:
        """
        Record an alert and schedule its delivery.

        Args:
            notification_type: maintenance_required, machine_offline or system_error
            machine_id: Machine concerned (None for system-wide errors)
            message: Human readable text

        Returns:
            The pending event, or None if rate limited
        """
        key = f"{notification_type.value}:{machine_id}"
        if not self.rate_limiter.allow(key):
            logger.warning(
                f"⚠️ Notification suppressed by rate limit ({key}): {message}"
            )
            return None

        now = self.clock()
        event = self.repository.add(
            NotificationEvent(
                type=notification_type,
                machine_id=machine_id,
                message=message,
                created_at=now,
                updated_at=now
            )
        )
        logger.info(f"Notification recorded: {notification_type.value} for machine {machine_id}")

        task = asyncio.create_task(self._deliver(event.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return event

    def _format(self, event: NotificationEvent) -> str:
        prefix = MESSAGE_PREFIX.get(event.type, event.type.value)
        return f"{prefix}\n{event.message}\n{format_datetime(event.created_at)}"

    async def _deliver(self, event_id: str) -> bool:
        """
        Deliver one event with bounded retries.

        Returns:
            True if sent, False if the event ended failed
        """
        event = self.repository.get(event_id)
        if event is None:
            return False

        text = self._format(event)
        attempts = event.attempts
        budget = max(1, min(self.retry_attempts, self.max_total_attempts - attempts))

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(budget),
                wait=wait_exponential(multiplier=1, max=self.retry_max_wait_seconds),
                retry=retry_if_exception_type(NotificationDeliveryError),
                reraise=True
            ):
                with attempt:
                    attempts += 1
                    self.repository.update_fields(event_id, attempts=attempts, updated_at=self.clock())
                    await self.channel.send(text)

        except NotificationDeliveryError as e:
            self._mark_failed(event_id, e.message)
            logger.error(f"❌ Notification {event_id} failed after {attempts} attempts: {e.message}")
            return False
        except Exception as e:
            # Not retried inline; retry_failed() picks it up like any other failure
            self._mark_failed(event_id, f"{type(e).__name__}: {e}")
            logger.exception(f"❌ Notification {event_id} failed with an unexpected error: {e}")
            return False

        self.repository.update_fields(
            event_id,
            delivery_status=DeliveryStatus.SENT,
            last_error=None,
            updated_at=self.clock()
        )
        logger.info(f"✅ Notification {event_id} sent ({event.type.value})")
        return True

    def _mark_failed(self, event_id: str, error: str) -> None:
        self.repository.update_fields(
            event_id,
            delivery_status=DeliveryStatus.FAILED,
            last_error=error,
            updated_at=self.clock()
        )

    async def retry_failed(self) -> int:
        """
        Re-attempt failed events that still have attempts left.

        Returns:
            Number of events delivered in this pass
        """
        failed = self.repository.list_by_status(DeliveryStatus.FAILED)
        retryable = [e for e in failed if e.attempts < self.max_total_attempts]
        if not retryable:
            return 0

        logger.info(f"Retrying {len(retryable)} failed notifications")
        sent = 0
        for event in retryable:
            self.repository.update_fields(event.id, delivery_status=DeliveryStatus.PENDING)
            if await self._deliver(event.id):
                sent += 1
        return sent

    # ==================== QUERIES ====================

    def stats(self) -> NotificationStats:
        events = self.repository.list_all()
        by_type = {t.value: 0 for t in NotificationType}
        for event in events:
            by_type[event.type.value] += 1

        return NotificationStats(
            total=len(events),
            sent=sum(1 for e in events if e.delivery_status == DeliveryStatus.SENT),
            failed=sum(1 for e in events if e.delivery_status == DeliveryStatus.FAILED),
            pending=sum(1 for e in events if e.delivery_status == DeliveryStatus.PENDING),
            by_type=by_type,
            rate_window=self.rate_limiter.get_stats()
        )

    def recent(self, limit: int = 50) -> list[NotificationEvent]:
        return self.repository.list_recent(limit)
