"""
Payments app for ride payment reconciliation.

This app handles:
- Ride payments through pluggable gateways (Paystack, Stripe)
- Verification and webhooks converging on one Transaction record
- Refunds serialized by a Redis lock
- Derived balances and balance-gated cashouts
- Operator reconciliation (stale sweeps, ride matching, persistence gaps)

Related apps:
    - notifications: Payment event notifications

Usage:
    from payments.services import InitiatePaymentParams, PaymentService

    result = PaymentService.initiate_payment(
        InitiatePaymentParams(user=user, amount=Decimal("5000.00"))
    )

    result = PaymentService.refund_payment(transaction_id, Decimal("1000.00"))
"""
