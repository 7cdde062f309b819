"""
Notifications app: user-facing records of payment events.

This app provides:
- Notification model keyed by NotificationKind
- NotificationService for idempotent notification creation

Notifications are created by payments.tasks.send_payment_notification,
which the payments CeleryDispatcher queues after a transaction changes
state.

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        type_key="payment_success",
        data={"transaction_id": "...", "amount": "5000.00", "currency": "NGN"},
        idempotency_key="<transaction_id>:payment_success",
    )
"""
