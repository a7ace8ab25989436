"""
Initial marketplace schema.

Creates:
    - ServicePro, FeatureFlag
    - ConnectedAccount, OnboardingLink
    - BookingTransaction (fee and one-active-per-booking constraints)
    - WebhookEvent (processed-event ledger)
"""

import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


def _version():
    return (
        "version",
        models.PositiveIntegerField(
            default=1,
            help_text="Version for optimistic locking - incremented on each save",
        ),
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ServicePro",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "display_name",
                    models.CharField(help_text="Public display name", max_length=200),
                ),
                (
                    "contact_email",
                    models.EmailField(
                        blank=True,
                        help_text="Contact email passed to the payment processor",
                        max_length=254,
                    ),
                ),
                (
                    "country",
                    models.CharField(
                        default="US",
                        help_text="ISO 3166-1 alpha-2 country code",
                        max_length=2,
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Whether this provider can onboard and accept bookings",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        blank=True,
                        help_text="Login account of this provider",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="service_pro",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Service Pro",
                "verbose_name_plural": "Service Pros",
                "ordering": ["display_name"],
            },
        ),
        migrations.CreateModel(
            name="FeatureFlag",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                *_timestamps(),
                (
                    "key",
                    models.SlugField(
                        help_text="Feature key, e.g. 'checkout'",
                        max_length=100,
                        unique=True,
                    ),
                ),
                (
                    "enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the feature is turned on in this database",
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        blank=True,
                        help_text="What the flag controls",
                        max_length=255,
                    ),
                ),
            ],
            options={
                "verbose_name": "Feature Flag",
                "verbose_name_plural": "Feature Flags",
                "ordering": ["key"],
            },
        ),
        migrations.CreateModel(
            name="ConnectedAccount",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "stripe_account_id",
                    models.CharField(
                        help_text="Processor account ID (acct_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "onboarding_status",
                    models.CharField(
                        choices=[
                            ("not_started", "Not Started"),
                            ("link_issued", "Link Issued"),
                            ("in_progress", "In Progress"),
                            ("complete", "Complete"),
                            ("restricted", "Restricted"),
                        ],
                        db_index=True,
                        default="not_started",
                        help_text="Current onboarding status",
                        max_length=20,
                    ),
                ),
                (
                    "charges_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the processor has enabled charges for this account",
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the processor has enabled payouts for this account",
                    ),
                ),
                (
                    "details_submitted",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the provider has submitted onboarding details",
                    ),
                ),
                (
                    "disabled_reason",
                    models.CharField(
                        blank=True,
                        help_text="Processor's disabled reason (e.g. 'rejected.fraud')",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "last_synced_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Timestamp of the newest processor state applied",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata",
                    ),
                ),
                (
                    "provider",
                    models.OneToOneField(
                        help_text="Provider this connected account belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="connected_account",
                        to="marketplace.servicepro",
                    ),
                ),
            ],
            options={
                "verbose_name": "Connected Account",
                "verbose_name_plural": "Connected Accounts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["onboarding_status", "last_synced_at"],
                        name="conn_acct_status_sync_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OnboardingLink",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "url",
                    models.URLField(
                        help_text="Processor-hosted onboarding URL",
                        max_length=2048,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(help_text="When this link expires"),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Account this link onboards",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="onboarding_links",
                        to="marketplace.connectedaccount",
                    ),
                ),
            ],
            options={
                "verbose_name": "Onboarding Link",
                "verbose_name_plural": "Onboarding Links",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["account", "created_at"],
                        name="onboarding_link_account_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingTransaction",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "booking_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Booking this transaction pays for",
                    ),
                ),
                (
                    "gross_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Amount charged to the customer in the smallest currency unit",
                    ),
                ),
                (
                    "platform_fee_cents",
                    models.PositiveBigIntegerField(
                        help_text="Platform fee retained, computed once at checkout",
                    ),
                ),
                (
                    "fee_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed", "Fixed Amount")],
                        default="percentage",
                        help_text="Fee model used for this transaction",
                        max_length=20,
                    ),
                ),
                (
                    "fee_rate",
                    models.DecimalField(
                        blank=True,
                        decimal_places=4,
                        help_text="Fee rate snapshot for percentage fees (0.15 = 15%)",
                        max_digits=7,
                        null=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "processor_charge_id",
                    models.CharField(
                        blank=True,
                        help_text="Processor charge ID (pi_xxx), immutable once set",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "finalized_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a terminal outcome was recorded",
                        null=True,
                    ),
                ),
                (
                    "failure_code",
                    models.CharField(
                        blank=True,
                        help_text="Machine-readable failure code",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Detailed reason if the charge failed",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata",
                    ),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Destination connected account",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="booking_transactions",
                        to="marketplace.connectedaccount",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        help_text="Customer being charged",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="booking_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        help_text="Provider receiving the funds",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="booking_transactions",
                        to="marketplace.servicepro",
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking Transaction",
                "verbose_name_plural": "Booking Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["booking_id", "status"],
                        name="booking_txn_booking_status_idx",
                    ),
                    models.Index(
                        fields=["provider", "created_at"],
                        name="booking_txn_provider_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(gross_amount_cents__gt=0),
                        name="booking_txn_gross_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            platform_fee_cents__lte=models.F("gross_amount_cents")
                        ),
                        name="booking_txn_fee_within_gross",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "failed"), _negated=True),
                        fields=("booking_id",),
                        name="booking_txn_one_active_per_booking",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "event_id",
                    models.CharField(
                        help_text="Processor event ID (evt_xxx), unique for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Processor event type (e.g. 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full webhook payload (JSON)"),
                ),
                (
                    "event_created_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the processor created the event",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processed", "Processed"),
                            ("held", "Held for Linking"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the event was applied",
                        null=True,
                    ),
                ),
                (
                    "held_charge_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Charge ID awaiting a linked transaction",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error or hold reason",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_event_status_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="webhook_event_type_idx",
                    ),
                ],
            },
        ),
    ]
