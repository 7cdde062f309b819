"""
Payment admin configuration.

Registers Transaction and ReconciliationGap with the Django admin.
Both are audit records: neither can be added or deleted here, and
transaction status only changes through the payment services.
"""

from django.contrib import admin

from payments.models import ReconciliationGap, Transaction
from payments.services import ReconciliationService

__all__ = [
    "ReconciliationGapAdmin",
    "TransactionAdmin",
]


class RefundInline(admin.TabularInline):
    """Refund records linked to an original transaction."""

    model = Transaction
    fk_name = "original_transaction"
    extra = 0
    can_delete = False
    fields = ["id", "amount", "currency", "status", "processed_at", "created_at"]
    readonly_fields = fields
    verbose_name = "Refund"
    verbose_name_plural = "Refunds"

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    Provides a read-only view of payments, refunds and cashouts for
    support and reconciliation.
    """

    list_display = [
        "id",
        "user",
        "type",
        "status",
        "amount",
        "currency",
        "gateway",
        "gateway_reference",
        "created_at",
    ]
    list_filter = ["status", "type", "gateway", "currency", "created_at"]
    search_fields = ["id", "gateway_reference", "ride_id", "user__email"]
    readonly_fields = [
        "id",
        "user",
        "ride_id",
        "original_transaction",
        "amount",
        "currency",
        "type",
        "status",
        "gateway",
        "gateway_reference",
        "gateway_response",
        "payment_method",
        "refunded_amount",
        "refund_details",
        "description",
        "metadata",
        "failure_reason",
        "processed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["user", "original_transaction"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "user", "ride_id", "type", "status", "version"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency", "refunded_amount", "original_transaction"),
            },
        ),
        (
            "Gateway",
            {
                "fields": (
                    "gateway",
                    "gateway_reference",
                    "payment_method",
                    "gateway_response",
                ),
            },
        ),
        (
            "Details",
            {
                "fields": ("description", "failure_reason", "metadata", "refund_details"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("processed_at", "created_at", "updated_at"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for transactions (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding transactions through admin."""
        return False


@admin.register(ReconciliationGap)
class ReconciliationGapAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationGap.

    The review queue for money the gateway moved that was not recorded
    locally. Operators fix the ledger by hand, then mark the gap resolved.
    """

    list_display = [
        "id",
        "kind",
        "gateway",
        "gateway_reference",
        "amount",
        "currency",
        "resolved",
        "created_at",
    ]
    list_filter = ["resolved", "kind", "gateway", "created_at"]
    search_fields = ["id", "gateway_reference", "transaction__id"]
    readonly_fields = [
        "id",
        "kind",
        "transaction",
        "gateway",
        "gateway_reference",
        "amount",
        "currency",
        "details",
        "error_message",
        "resolved_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["transaction"]
    date_hierarchy = "created_at"
    ordering = ["resolved", "-created_at"]
    actions = ["mark_resolved"]

    @admin.action(description="Mark selected gaps as resolved")
    def mark_resolved(self, request, queryset):
        """Bulk action to close gaps."""
        count = 0
        for gap in queryset.filter(resolved=False):
            result = ReconciliationService.resolve_gap(
                gap.id, notes=f"Resolved in admin by {request.user}"
            )
            if result.success:
                count += 1
        self.message_user(request, f"Marked {count} gaps as resolved.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for gaps (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding gaps through admin."""
        return False
