# ==========================================
# apps/settlements/admin.py
# ==========================================

from django.contrib import admin
from django.utils.html import format_html
from .models import (
    BatchLineItem,
    BatchStatus,
    BatchUsageAllocation,
    GroupStockBatch,
    GroupStockTransaction,
    InterSiteSettlement,
    SettlementPayment,
    SettlementStatus,
)


def _badge(bg, fg, label):
    return format_html(
        '<span style="background: {}; color: {}; padding: 3px 8px; '
        'border-radius: 10px; font-size: 11px;">{}</span>',
        bg, fg, label
    )


class BatchLineItemInline(admin.TabularInline):
    """Inline admin for batch material lines."""
    model = BatchLineItem
    extra = 0
    fields = ['material_id', 'material_name', 'unit', 'quantity', 'unit_cost']


class BatchUsageAllocationInline(admin.TabularInline):
    """Read-only inline of usage allocations."""
    model = BatchUsageAllocation
    fk_name = 'batch'
    extra = 0
    fields = ['site', 'material_id', 'quantity_used', 'amount', 'usage_date', 'is_payer', 'settlement']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        """Allocations are created by the stock ledger service."""
        return False


class SettlementPaymentInline(admin.TabularInline):
    """Inline admin for settlement payments."""
    model = SettlementPayment
    extra = 0
    fields = ['amount', 'payment_mode', 'payment_date', 'payer_source', 'reference_number', 'recorded_by']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        """Payments are recorded by the settlement service."""
        return False


@admin.register(GroupStockBatch)
class GroupStockBatchAdmin(admin.ModelAdmin):
    """Admin interface for group stock batches."""

    list_display = [
        'ref_code',
        'site_group',
        'paying_site',
        'total_amount',
        'remaining_quantity',
        'status_badge',
        'is_vendor_paid',
        'purchase_date',
    ]
    list_filter = ['status', 'is_vendor_paid', 'site_group', 'purchase_date']
    search_fields = ['ref_code', 'vendor_name', 'paying_site__name']
    readonly_fields = ['ref_code', 'remaining_quantity', 'completed_at', 'created_at', 'updated_at']
    inlines = [BatchLineItemInline, BatchUsageAllocationInline]
    date_hierarchy = 'purchase_date'

    def status_badge(self, obj):
        """Display batch status as colored badge."""
        colors = {
            BatchStatus.RECORDED: ('#E5C49A', '#2C1810'),
            BatchStatus.PARTIAL_USED: ('#A47449', 'white'),
            BatchStatus.COMPLETED: ('#6B8E5E', 'white'),
        }
        bg, fg = colors.get(obj.status, ('#ccc', '#666'))
        return _badge(bg, fg, obj.get_status_display())
    status_badge.short_description = 'Status'


@admin.register(GroupStockTransaction)
class GroupStockTransactionAdmin(admin.ModelAdmin):
    """Admin interface for the group stock ledger."""

    list_display = ['transaction_type', 'batch', 'site', 'material_id', 'quantity', 'total_cost', 'transaction_date']
    list_filter = ['transaction_type', 'site_group']
    search_fields = ['batch__ref_code', 'material_id', 'site__name']
    readonly_fields = ['created_at']


@admin.register(InterSiteSettlement)
class InterSiteSettlementAdmin(admin.ModelAdmin):
    """
    Admin interface for inter-site settlements.

    State changes go through the settlement service; the admin is for
    inspection.
    """

    list_display = [
        'settlement_code',
        'from_site',
        'to_site',
        'week_display',
        'total_amount',
        'paid_amount',
        'status_badge',
        'created_at',
    ]
    list_filter = ['status', 'site_group', 'year']
    search_fields = ['settlement_code', 'from_site__name', 'to_site__name']
    readonly_fields = [
        'settlement_code', 'status', 'total_amount', 'paid_amount',
        'created_by', 'approved_by', 'approved_at', 'settled_by', 'settled_at',
        'cancelled_by', 'cancelled_at', 'cancellation_reason', 'created_at', 'updated_at',
    ]
    inlines = [SettlementPaymentInline]

    def week_display(self, obj):
        return f"W{obj.week_number:02d}/{obj.year}"
    week_display.short_description = 'Week'

    def status_badge(self, obj):
        """Display settlement status as colored badge."""
        colors = {
            SettlementStatus.PENDING: ('#E5C49A', '#2C1810'),
            SettlementStatus.APPROVED: ('#A47449', 'white'),
            SettlementStatus.SETTLED: ('#6B8E5E', 'white'),
            SettlementStatus.CANCELLED: ('#B85C5C', 'white'),
        }
        bg, fg = colors.get(obj.status, ('#ccc', '#666'))
        return _badge(bg, fg, obj.get_status_display())
    status_badge.short_description = 'Status'


@admin.register(BatchUsageAllocation)
class BatchUsageAllocationAdmin(admin.ModelAdmin):
    """Usage allocations; the settlement column shows which ones are claimed."""

    list_display = ['batch', 'site', 'material_id', 'quantity_used', 'amount', 'usage_date', 'is_payer', 'settlement']
    list_filter = ['is_payer', 'site_group', 'usage_date']
    search_fields = ['batch__ref_code', 'site__name', 'settlement__settlement_code']
    readonly_fields = ['settlement', 'created_at']
