"""
Add the platform-side payout hold to ConnectedAccount.
"""

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("marketplace", "0002_add_celery_beat_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="connectedaccount",
            name="payouts_on_hold",
            field=models.BooleanField(
                default=False,
                help_text="Manual hold set by ops; a held provider cannot take new charges",
            ),
        ),
        migrations.AddField(
            model_name="connectedaccount",
            name="payout_hold_reason",
            field=models.CharField(
                blank=True,
                default="",
                help_text="Why payouts are held (e.g. 'active_dispute', 'manual_hold')",
                max_length=255,
            ),
        ),
    ]
