"""
Django signals published by the payments app.

Rides live in another subsystem; it subscribes to ride_payment_updated
instead of this app writing to ride tables directly.

Signals:
    ride_payment_updated(sender, ride_id, payment_fields)
        Sent by payments.tasks.update_ride_payment_status when a ride's
        payment settles or fails. payment_fields carries is_paid,
        payment_status, payment_completed_at and payment_transaction_id.

Usage:
    from django.dispatch import receiver
    from payments.signals import ride_payment_updated

    @receiver(ride_payment_updated)
    def on_ride_paid(sender, ride_id, payment_fields, **kwargs):
        Ride.objects.filter(pk=ride_id).update(**payment_fields)
"""

from __future__ import annotations

from django.dispatch import Signal

ride_payment_updated = Signal()
