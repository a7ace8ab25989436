"""
Add celery-beat schedules for the marketplace sweeps.

- Link Held Charge Events: every 5 minutes
- Reconcile Stale Connected Accounts: every hour
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Link Held Charge Events",
        "task": "marketplace.tasks.link_held_charge_events",
        "every": 5,
        "period": "minutes",
        "description": (
            "Applies charge webhooks that arrived before checkout stored "
            "the charge id."
        ),
    },
    {
        "name": "Reconcile Stale Connected Accounts",
        "task": "marketplace.tasks.reconcile_stale_accounts",
        "every": 1,
        "period": "hours",
        "description": (
            "Polls Stripe for connected accounts that have not synced "
            "within ACCOUNT_RECONCILE_AFTER_HOURS."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("marketplace", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
