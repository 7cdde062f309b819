"""
Celery tasks for payment side effects and periodic reconciliation.

This module provides async tasks for:
- Creating payment notifications (queued by CeleryDispatcher)
- Publishing ride payment updates (queued by CeleryDispatcher)
- Re-verifying stale pending/processing transactions (celery-beat)

Consumers must tolerate duplicate delivery: notifications are keyed
"{transaction_id}:{notification_type}" and ride updates carry the full
set of payment fields.

Usage:
    from payments.tasks import send_payment_notification

    send_payment_notification.delay(str(user.id), "payment_success", payload)

    # Normally run via celery-beat every 15 minutes
    from payments.tasks import reconcile_stale_transactions
    reconcile_stale_transactions.delay()
"""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task
from django.contrib.auth import get_user_model
from django.db import DatabaseError

from payments.signals import ride_payment_updated

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_SIDE_EFFECT_RETRIES = 5


# =============================================================================
# Side-effect Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_SIDE_EFFECT_RETRIES},
    acks_late=True,
)
def send_payment_notification(
    self,
    user_id: str,
    notification_type: str,
    payload: dict[str, Any],
) -> dict:
    """
    Create the in-app notification for a payment event.

    Args:
        user_id: Recipient primary key
        notification_type: payment_success, payment_pending, ...
        payload: Event payload; must carry transaction_id

    Returns:
        Dict with status: created, duplicate, user_not_found or failed
    """
    from notifications.services import NotificationService

    transaction_id = payload.get("transaction_id")
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        logger.warning(
            "Notification recipient not found",
            extra={"user_id": user_id, "transaction_id": transaction_id},
        )
        return {"status": "user_not_found", "user_id": user_id}

    idempotency_key = f"{transaction_id}:{notification_type}" if transaction_id else None
    result = NotificationService.create_notification(
        recipient=user,
        type_key=notification_type,
        data=payload,
        idempotency_key=idempotency_key,
    )

    if result.success:
        return {"status": "created", "notification_id": result.data.id}
    if result.error_code == "DUPLICATE":
        return {"status": "duplicate", "idempotency_key": idempotency_key}

    logger.error(
        f"Payment notification not created: {result.error}",
        extra={
            "user_id": user_id,
            "transaction_id": transaction_id,
            "notification_type": notification_type,
            "error_code": result.error_code,
        },
    )
    return {"status": "failed", "error_code": result.error_code}


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_SIDE_EFFECT_RETRIES},
    acks_late=True,
)
def update_ride_payment_status(self, ride_id: str, payment_fields: dict[str, Any]) -> dict:
    """
    Publish a ride's payment fields to the ride subsystem.

    Sends payments.signals.ride_payment_updated. A receiver that raises
    fails the task, which is then retried.

    Args:
        ride_id: Ride UUID
        payment_fields: is_paid, payment_status, payment_completed_at,
            payment_transaction_id
    """
    responses = ride_payment_updated.send(
        sender=update_ride_payment_status,
        ride_id=ride_id,
        payment_fields=payment_fields,
    )
    logger.info(
        "Ride payment status published",
        extra={
            "ride_id": ride_id,
            "transaction_id": payment_fields.get("payment_transaction_id"),
            "receivers": len(responses),
        },
    )
    return {"status": "sent", "ride_id": ride_id, "receivers": len(responses)}


# =============================================================================
# Periodic Tasks
# =============================================================================


@shared_task
def reconcile_stale_transactions(older_than_minutes: int | None = None, limit: int = 100) -> dict:
    """
    Periodic task to re-verify stale pending/processing transactions.

    Scheduled via celery-beat every 15 minutes (see migration 0002).

    Returns:
        Dict with sweep counts, or status "skipped" when another sweep
        is running
    """
    from payments.services.reconciliation_service import ReconciliationService

    result = ReconciliationService.reconcile_stale_transactions(
        older_than_minutes=older_than_minutes,
        limit=limit,
    )
    if not result.success:
        return {"status": "skipped", "error_code": result.error_code}
    return {"status": "completed", **result.data.to_dict()}
