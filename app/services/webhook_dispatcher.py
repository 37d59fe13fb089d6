"""
Outbound webhook delivery.

The dispatcher is a polling loop that talks to the rest of the system only
through the ``webhook_deliveries`` table. Each poll claims a small batch of due
rows with ``FOR UPDATE SKIP LOCKED`` and leases them by pushing their
``next_attempt_at`` past the time the whole batch can take (one HTTP timeout
per chunk of ``concurrency`` rows), then commits, so the row locks are never
held across network I/O. The lease value is also the ownership token: a
delivery is only sent, and its result only written, while the row still
carries it. Several dispatchers can run side by side; a crashed one simply
lets its leases expire.

Row state machine::

    pending --2xx--> success
    pending --error, attempts < limit--> pending (rescheduled)
    pending --error, attempts == limit--> failed

Exhausted rows are never picked up again. A replay creates a new row.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.models.enums import EventType, WebhookDeliveryStatus
from app.models.webhook_delivery import WebhookDelivery
from app.services.webhook_service import build_event_body
from app.utils.webhook_signing import SigningSecretMissingError, sign_payload

logger = logging.getLogger(__name__)

# Extra lease time on top of the batch's HTTP timeouts before a claimed row is due again
LEASE_MARGIN_SECONDS = 30


@dataclass(frozen=True)
class DeliveryOutcome:
    delivery_id: uuid.UUID
    status: WebhookDeliveryStatus
    attempt_count: int
    status_code: Optional[int] = None
    error: Optional[str] = None


def next_attempt_delay(attempt_count: int, delays: Optional[Sequence[int]] = None) -> timedelta:
    """Delay before the next try, indexed by attempts made so far and held at the last value."""
    delays = list(delays if delays is not None else settings.WEBHOOK_RETRY_DELAYS_SECONDS)
    if not delays:
        return timedelta(0)
    index = max(0, min(attempt_count, len(delays) - 1))
    return timedelta(seconds=delays[index])


class WebhookDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        *,
        client: Optional[httpx.AsyncClient] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        retry_limit: Optional[int] = None,
        retry_delays: Optional[Sequence[int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.WEBHOOK_WORKER_BATCH_SIZE
        self.concurrency = max(1, concurrency or settings.WEBHOOK_WORKER_CONCURRENCY)
        self.timeout_seconds = timeout_seconds or settings.WEBHOOK_TIMEOUT_SECONDS
        self.retry_limit = retry_limit or settings.WEBHOOK_RETRY_LIMIT
        self.retry_delays = list(retry_delays if retry_delays is not None else settings.WEBHOOK_RETRY_DELAYS_SECONDS)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.timeout_seconds)
        self._stopping = asyncio.Event()
        # Lease token per claimed delivery id
        self._leases: Dict[uuid.UUID, datetime] = {}

    @property
    def lease_seconds(self) -> float:
        chunks = math.ceil(self.batch_size / self.concurrency)
        return self.timeout_seconds * chunks + LEASE_MARGIN_SECONDS

    # --- Lifecycle ---
    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("Webhook dispatcher stop requested; finishing in-flight deliveries")
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def run_forever(self, poll_seconds: Optional[float] = None) -> None:
        poll_seconds = poll_seconds if poll_seconds is not None else settings.WEBHOOK_WORKER_POLL_SECONDS
        logger.info(
            f"Webhook dispatcher started (batch={self.batch_size}, concurrency={self.concurrency}, "
            f"poll={poll_seconds}s, retry_limit={self.retry_limit})"
        )
        while not self.stopping:
            try:
                outcomes = await self.run_once()
                if outcomes:
                    logger.info(f"Processed {len(outcomes)} webhook deliveries")
            except Exception:
                # A failed poll (database restart, etc.) must not end the loop
                logger.exception("Webhook dispatcher poll failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Webhook dispatcher stopped")

    # --- Batch processing ---
    async def claim_batch(self) -> List[uuid.UUID]:
        now = self.clock()
        leased_until = now + timedelta(seconds=self.lease_seconds)
        async with self.session_factory() as db:
            deliveries = await crud.webhook_delivery.claim_due(
                db, now=now, batch_size=self.batch_size, leased_until=leased_until
            )
            ids = [d.id for d in deliveries]
            await db.commit()
        for delivery_id in ids:
            self._leases[delivery_id] = leased_until
        return ids

    async def run_once(self) -> List[DeliveryOutcome]:
        delivery_ids = await self.claim_batch()
        if not delivery_ids:
            return []
        logger.debug(f"Claimed {len(delivery_ids)} due webhook deliveries")

        outcomes: List[DeliveryOutcome] = []
        try:
            for start in range(0, len(delivery_ids), self.concurrency):
                if self.stopping:
                    # Unprocessed rows come back once their lease runs out
                    logger.info(f"Stopping with {len(delivery_ids) - start} claimed deliveries left to lease expiry")
                    break
                chunk = delivery_ids[start:start + self.concurrency]
                results = await asyncio.gather(*(self.deliver(d) for d in chunk), return_exceptions=True)
                for delivery_id, result in zip(chunk, results):
                    if isinstance(result, BaseException):
                        logger.error(f"Unhandled error delivering webhook {delivery_id}: {result}", exc_info=result)
                    elif result is not None:
                        outcomes.append(result)
        finally:
            for delivery_id in delivery_ids:
                self._leases.pop(delivery_id, None)
        return outcomes

    # --- Single delivery ---
    async def deliver(self, delivery_id: uuid.UUID) -> Optional[DeliveryOutcome]:
        """
        Sends one claimed delivery. Returns None when the row is not held by
        this dispatcher any more; in that case nothing is sent or written.
        """
        leased_until = self._leases.get(delivery_id)
        if leased_until is None:
            return None

        async with self.session_factory() as db:
            delivery = await crud.webhook_delivery.get_leased(db, delivery_id=delivery_id, leased_until=leased_until)
            if delivery is None:
                logger.warning(f"Lease on webhook delivery {delivery_id} lost before sending; skipped")
                return None
            claimed_attempts = delivery.attempt_count

            event = await crud.event.get(db, tenant_id=delivery.tenant_id, id=delivery.event_id)
            if event is None:
                written = await crud.webhook_delivery.finish_attempt(
                    db,
                    delivery_id=delivery.id,
                    leased_until=leased_until,
                    claimed_attempt_count=claimed_attempts,
                    values={
                        "status": WebhookDeliveryStatus.FAILED.value,
                        "next_attempt_at": None,
                        "last_error": "Event not found",
                    },
                )
                await db.commit()
                if not written:
                    return None
                logger.warning(f"Webhook delivery {delivery.id} failed: event {delivery.event_id} not found")
                return DeliveryOutcome(
                    delivery_id=delivery.id,
                    status=WebhookDeliveryStatus.FAILED,
                    attempt_count=claimed_attempts,
                    error="Event not found",
                )

            tenant = await crud.crud_tenant.get_tenant(db, tenant_id=delivery.tenant_id)
            body = build_event_body(event)
            # No transaction stays open across the HTTP call
            await db.commit()
            status_code, error = await self._send(delivery, event.type, body, self._signing_secret(tenant))
            outcome = await self._record_attempt(
                db, delivery, event.type, leased_until, claimed_attempts, status_code, error
            )
            if outcome is None:
                await db.rollback()
            else:
                await db.commit()
        return outcome

    def _signing_secret(self, tenant) -> Optional[str]:
        if tenant is not None and tenant.webhook_secret:
            return tenant.webhook_secret
        if settings.WEBHOOK_SIGNING_SECRET is not None:
            return settings.WEBHOOK_SIGNING_SECRET.get_secret_value()
        return None

    async def _send(
        self, delivery: WebhookDelivery, event_type: str, body: str, secret: Optional[str]
    ) -> Tuple[Optional[int], Optional[str]]:
        """Returns (status_code, error). A 2xx status with no error is the only success."""
        try:
            signing_headers = sign_payload(secret, body)
        except SigningSecretMissingError as e:
            return None, str(e)

        headers = {
            "Content-Type": "application/json",
            "X-Referral-Event-Id": str(delivery.event_id),
            "X-Referral-Event-Type": event_type,
            "X-Referral-Delivery-Id": str(delivery.id),
            **signing_headers,
        }
        try:
            response = await self.client.post(delivery.url, content=body, headers=headers, timeout=self.timeout_seconds)
        except httpx.TimeoutException:
            return None, f"Request timed out after {self.timeout_seconds}s"
        except httpx.HTTPError as e:
            return None, f"{type(e).__name__}: {e}"

        if 200 <= response.status_code < 300:
            return response.status_code, None
        return response.status_code, f"HTTP {response.status_code}: {response.text[:500]}"

    async def _record_attempt(
        self,
        db: AsyncSession,
        delivery: WebhookDelivery,
        event_type: str,
        leased_until: datetime,
        claimed_attempts: int,
        status_code: Optional[int],
        error: Optional[str],
    ) -> Optional[DeliveryOutcome]:
        now = self.clock()
        attempt = claimed_attempts + 1
        values = {
            "attempt_count": attempt,
            "last_attempt_at": now,
            "last_status_code": status_code,
            "last_error": error,
        }
        payload = {
            "deliveryId": str(delivery.id),
            "eventId": str(delivery.event_id),
            "eventType": event_type,
            "url": delivery.url,
            "attempt": attempt,
            "statusCode": status_code,
        }

        if error is None:
            status = WebhookDeliveryStatus.SUCCESS
            values.update(status=status.value, next_attempt_at=None)
            event_type_out = EventType.WEBHOOK_SENT
        elif attempt >= self.retry_limit:
            status = WebhookDeliveryStatus.FAILED
            values.update(status=status.value, next_attempt_at=None)
            payload["error"] = error
            event_type_out = EventType.WEBHOOK_EXHAUSTED
        else:
            status = WebhookDeliveryStatus.PENDING
            delay = next_attempt_delay(attempt, self.retry_delays)
            values.update(status=status.value, next_attempt_at=now + delay)
            payload["error"] = error
            payload["nextAttemptAt"] = values["next_attempt_at"].isoformat()
            event_type_out = EventType.WEBHOOK_FAILED

        written = await crud.webhook_delivery.finish_attempt(
            db,
            delivery_id=delivery.id,
            leased_until=leased_until,
            claimed_attempt_count=claimed_attempts,
            values=values,
        )
        if not written:
            logger.warning(
                f"Lease on webhook delivery {delivery.id} lost during attempt {attempt}; "
                f"result (status={status_code}) discarded"
            )
            return None
        await crud.event.append(db, tenant_id=delivery.tenant_id, type=event_type_out, payload=payload)

        if status == WebhookDeliveryStatus.SUCCESS:
            logger.info(f"Webhook delivered: event={delivery.event_id} delivery={delivery.id} attempt={attempt} status={status_code}")
        elif status == WebhookDeliveryStatus.FAILED:
            logger.warning(
                f"Webhook exhausted after {attempt} attempts: event={delivery.event_id} delivery={delivery.id} "
                f"status={status_code} error={error}"
            )
        else:
            logger.warning(
                f"Webhook attempt failed: event={delivery.event_id} delivery={delivery.id} attempt={attempt} "
                f"status={status_code} error={error}; retrying in {int(delay.total_seconds())}s"
            )
        return DeliveryOutcome(delivery.id, status, attempt, status_code=status_code, error=error)
