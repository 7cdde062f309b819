"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Transaction FSM and ReconciliationGap model tests
- test_locks.py: Redis refund and sweep lock tests
- test_dispatch.py: Celery side-effect dispatcher tests
- test_tasks.py: Notification, ride update and stale sweep task tests
- test_views.py: API endpoint tests

Engine and service tests live in payments/services/tests/, adapter
tests in payments/adapters/tests/ and webhook view tests in
payments/webhooks/tests/.

Usage:
    pytest payments/tests/
    pytest payments/tests/test_views.py
"""
