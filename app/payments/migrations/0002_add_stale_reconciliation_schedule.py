"""
Add celery-beat schedule for re-verifying stale transactions.

This migration creates the periodic task schedule for the
reconcile_stale_transactions task, which runs every 15 minutes to
re-verify pending/processing transactions with their gateway.
"""

from django.db import migrations

TASK_NAME = "Reconcile Stale Payment Transactions"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the stale transaction sweep."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payments.tasks.reconcile_stale_transactions",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Re-verifies pending/processing transactions older than "
                "PAYMENT_STALE_TRANSACTION_MINUTES with their gateway."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
