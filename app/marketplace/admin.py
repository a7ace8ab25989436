"""
Marketplace admin configuration.

Processor-owned state (capability flags, transaction status, webhook
outcomes) is read-only here; it changes through the service layer only.
"""

from django.contrib import admin

from marketplace.models import (
    BookingTransaction,
    ConnectedAccount,
    FeatureFlag,
    OnboardingLink,
    ServicePro,
    WebhookEvent,
)


@admin.register(ServicePro)
class ServiceProAdmin(admin.ModelAdmin):
    list_display = ["id", "display_name", "user", "country", "is_active", "created_at"]
    list_filter = ["is_active", "country"]
    search_fields = ["id", "display_name", "contact_email", "user__email"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["display_name"]


class OnboardingLinkInline(admin.TabularInline):
    """Inline display of links issued for an account."""

    model = OnboardingLink
    extra = 0
    readonly_fields = ["url", "expires_at", "created_at"]
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for ConnectedAccount.

    Provides visibility into Stripe Connect account status. The payout
    hold is the only field ops may edit.
    """

    list_display = [
        "id",
        "provider",
        "stripe_account_id",
        "onboarding_status",
        "charges_enabled",
        "payouts_enabled",
        "payouts_on_hold",
        "last_synced_at",
    ]
    list_filter = [
        "onboarding_status",
        "charges_enabled",
        "payouts_enabled",
        "payouts_on_hold",
    ]
    search_fields = ["id", "stripe_account_id", "provider__display_name"]
    readonly_fields = [
        "id",
        "provider",
        "stripe_account_id",
        "onboarding_status",
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "disabled_reason",
        "last_synced_at",
        "created_at",
        "updated_at",
        "version",
    ]
    inlines = [OnboardingLinkInline]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "provider", "stripe_account_id"),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "onboarding_status",
                    "charges_enabled",
                    "payouts_enabled",
                    "details_submitted",
                    "disabled_reason",
                    "last_synced_at",
                ),
            },
        ),
        (
            "Payout risk",
            {
                "fields": ("payouts_on_hold", "payout_hold_reason"),
                "description": "A held provider is refused at checkout until the hold is lifted.",
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(BookingTransaction)
class BookingTransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for BookingTransaction.

    State changes come from webhooks, not from admin.
    """

    list_display = [
        "id",
        "booking_id",
        "provider",
        "amount_display",
        "fee_display",
        "status",
        "created_at",
    ]
    list_filter = ["status", "fee_type", "currency", "created_at"]
    search_fields = ["id", "booking_id", "processor_charge_id", "customer__email"]
    readonly_fields = [
        "id",
        "booking_id",
        "customer",
        "provider",
        "account",
        "gross_amount_cents",
        "platform_fee_cents",
        "fee_type",
        "fee_rate",
        "currency",
        "processor_charge_id",
        "status",
        "finalized_at",
        "failure_code",
        "failure_reason",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def amount_display(self, obj: BookingTransaction) -> str:
        """Display the gross amount formatted as currency."""
        return f"{obj.gross_amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def fee_display(self, obj: BookingTransaction) -> str:
        return f"{obj.platform_fee_cents / 100:.2f} {obj.currency.upper()}"

    fee_display.short_description = "Platform fee"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for transactions (audit trail)."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = [
        "event_id",
        "event_type",
        "status",
        "held_charge_id",
        "event_created_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["event_id", "held_charge_id"]
    readonly_fields = [
        "id",
        "event_id",
        "event_type",
        "payload",
        "event_created_at",
        "status",
        "processed_at",
        "held_charge_id",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(FeatureFlag)
class FeatureFlagAdmin(admin.ModelAdmin):
    list_display = ["key", "enabled", "description", "updated_at"]
    list_editable = ["enabled"]
    search_fields = ["key"]
