from datetime import date
from decimal import Decimal

from rest_framework import serializers

from apps.sites.models import Site
from .models import (
    BatchLineItem,
    BatchUsageAllocation,
    GroupStockBatch,
    InterSiteSettlement,
    PaymentMode,
    SettlementPayment,
    SettlementStatus,
)


# =============================================================================
# Input Serializers
# =============================================================================

class SettlementFilterSerializer(serializers.Serializer):
    """
    Validate query parameters for settlement listing.

    Query Parameters:
        site (UUID): Site that is creditor or debtor
        status (str): Filter by settlement status
    """

    site = serializers.UUIDField()
    status = serializers.ChoiceField(choices=SettlementStatus.choices, required=False)


class SitePairSerializer(serializers.Serializer):
    """Creditor (paid for the material) and debtor (used it)."""

    creditor_site = serializers.UUIDField()
    debtor_site = serializers.UUIDField()

    def validate(self, attrs):
        if attrs['creditor_site'] == attrs['debtor_site']:
            raise serializers.ValidationError({
                'debtor_site': 'Debtor must be a different site than the creditor'
            })
        return attrs


class BalanceKeySerializer(SitePairSerializer):
    """Identify one weekly balance."""

    week = serializers.IntegerField(min_value=1, max_value=53)
    year = serializers.IntegerField(min_value=2000, max_value=2100)

    def validate(self, attrs):
        attrs = super().validate(attrs)
        try:
            date.fromisocalendar(attrs['year'], attrs['week'], 1)
        except ValueError:
            raise serializers.ValidationError({
                'week': f"Year {attrs['year']} has no ISO week {attrs['week']}"
            })
        return attrs


class GenerateSettlementSerializer(BalanceKeySerializer):
    require_vendor_paid = serializers.BooleanField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


class PaymentInputSerializer(serializers.Serializer):
    """
    Validate input for recording a payment.

    Fields:
        amount (decimal): Amount paid, defaults to the full pending amount
            where the endpoint allows it
        payment_mode (str): cash, upi, bank_transfer, cheque or adjustment
        payer_source (str): Where the money came from
        payment_date (date): Defaults to today
    """

    amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, min_value=Decimal('0.01'), required=False
    )
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices, default=PaymentMode.CASH)
    payer_source = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    payment_date = serializers.DateField(required=False)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


class RecordPaymentSerializer(PaymentInputSerializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0.01'))


class SettleInputSerializer(PaymentInputSerializer):
    """Pay an existing settlement, or generate one for a balance key and pay it."""

    settlement = serializers.UUIDField(required=False)
    creditor_site = serializers.UUIDField(required=False)
    debtor_site = serializers.UUIDField(required=False)
    week = serializers.IntegerField(min_value=1, max_value=53, required=False)
    year = serializers.IntegerField(min_value=2000, max_value=2100, required=False)

    def validate(self, attrs):
        if attrs.get('settlement'):
            return attrs
        key = BalanceKeySerializer(data={
            field: attrs.get(field) for field in ('creditor_site', 'debtor_site', 'week', 'year')
        })
        if not key.is_valid():
            raise serializers.ValidationError(key.errors)
        return attrs


class NetSettleInputSerializer(serializers.Serializer):
    site_a = serializers.UUIDField()
    site_b = serializers.UUIDField()
    week = serializers.IntegerField(min_value=1, max_value=53)
    year = serializers.IntegerField(min_value=2000, max_value=2100)
    pay_net = serializers.BooleanField(default=False)
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices, default=PaymentMode.CASH)
    payer_source = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    payment_date = serializers.DateField(required=False)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['site_a'] == attrs['site_b']:
            raise serializers.ValidationError({'site_b': 'Net settlement needs two different sites'})
        try:
            date.fromisocalendar(attrs['year'], attrs['week'], 1)
        except ValueError:
            raise serializers.ValidationError({
                'week': f"Year {attrs['year']} has no ISO week {attrs['week']}"
            })
        return attrs


class CancelInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


class LineItemInputSerializer(serializers.Serializer):
    material_id = serializers.CharField(max_length=64)
    material_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    unit = serializers.CharField(max_length=20, required=False, default='nos')
    quantity = serializers.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal('0.001'))
    unit_cost = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal('0'))


class GroupPurchaseInputSerializer(serializers.Serializer):
    site_group = serializers.UUIDField()
    paying_site = serializers.UUIDField()
    purchase_date = serializers.DateField()
    items = LineItemInputSerializer(many=True, allow_empty=False)
    total_amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, min_value=Decimal('0'), required=False
    )
    vendor_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    is_vendor_paid = serializers.BooleanField(default=False)
    ref_code = serializers.CharField(max_length=50, required=False)
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


class UsageInputSerializer(serializers.Serializer):
    site = serializers.UUIDField()
    material_id = serializers.CharField(max_length=64)
    quantity = serializers.DecimalField(max_digits=14, decimal_places=3, min_value=Decimal('0.001'))
    usage_date = serializers.DateField()
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


# =============================================================================
# Output Serializers
# =============================================================================


class SiteMinimalSerializer(serializers.ModelSerializer):
    """Minimal site info for nested serialization."""

    class Meta:
        model = Site
        fields = ['id', 'name']
        read_only_fields = fields


class SettlementPaymentSerializer(serializers.ModelSerializer):

    class Meta:
        model = SettlementPayment
        fields = [
            'id',
            'amount',
            'payment_date',
            'payment_mode',
            'payer_source',
            'reference_number',
            'notes',
            'recorded_by',
            'created_at',
        ]
        read_only_fields = fields


class InterSiteSettlementListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for settlement lists."""

    from_site = SiteMinimalSerializer(read_only=True)
    to_site = SiteMinimalSerializer(read_only=True)
    pending_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = InterSiteSettlement
        fields = [
            'id',
            'settlement_code',
            'site_group',
            'from_site',
            'to_site',
            'year',
            'week_number',
            'total_amount',
            'paid_amount',
            'pending_amount',
            'status',
            'created_at',
        ]
        read_only_fields = fields


class InterSiteSettlementSerializer(InterSiteSettlementListSerializer):
    """Full settlement with audit stamps and payments."""

    payments = SettlementPaymentSerializer(many=True, read_only=True)
    allocation_count = serializers.SerializerMethodField()

    class Meta(InterSiteSettlementListSerializer.Meta):
        fields = InterSiteSettlementListSerializer.Meta.fields + [
            'batch',
            'period_start',
            'period_end',
            'notes',
            'created_by',
            'approved_by',
            'approved_at',
            'settled_by',
            'settled_at',
            'cancelled_by',
            'cancelled_at',
            'cancellation_reason',
            'allocation_count',
            'payments',
            'updated_at',
        ]
        read_only_fields = fields

    def get_allocation_count(self, obj):
        return obj.allocations.count()


class InterSiteBalanceSerializer(serializers.Serializer):
    """Serializes InterSiteBalance dataclasses."""

    site_group_id = serializers.UUIDField()
    creditor_site_id = serializers.UUIDField()
    creditor_site_name = serializers.SerializerMethodField()
    debtor_site_id = serializers.UUIDField()
    debtor_site_name = serializers.SerializerMethodField()
    year = serializers.IntegerField()
    week_number = serializers.IntegerField()
    week_start = serializers.DateField()
    week_end = serializers.DateField()
    total_amount_owed = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_quantity = serializers.DecimalField(max_digits=14, decimal_places=3)
    transaction_count = serializers.IntegerField()
    has_unpaid_vendor = serializers.BooleanField()
    allocation_ids = serializers.ListField(child=serializers.UUIDField())

    def get_creditor_site_name(self, obj):
        return self.context.get('site_names', {}).get(obj.creditor_site_id)

    def get_debtor_site_name(self, obj):
        return self.context.get('site_names', {}).get(obj.debtor_site_id)


class SiteSummarySerializer(serializers.Serializer):
    site_id = serializers.UUIDField()
    site_name = serializers.CharField()
    total_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_used = serializers.DecimalField(max_digits=14, decimal_places=2)
    settlement_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    settlement_received = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_cost = serializers.DecimalField(max_digits=14, decimal_places=2)


class SiteSettlementSummarySerializer(serializers.Serializer):
    site_id = serializers.UUIDField()
    site_group_id = serializers.UUIDField(allow_null=True)
    total_owed_to_you = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_you_owe = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    unsettled_count = serializers.IntegerField()
    pending_settlements_count = serializers.IntegerField()
    approved_settlements_count = serializers.IntegerField()


class NetSettlementResultSerializer(serializers.Serializer):
    offset_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    settlements = InterSiteSettlementSerializer(many=True)


class BatchLineItemSerializer(serializers.ModelSerializer):

    line_total = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = BatchLineItem
        fields = ['id', 'material_id', 'material_name', 'unit', 'quantity', 'unit_cost', 'line_total']
        read_only_fields = fields


class GroupStockBatchSerializer(serializers.ModelSerializer):

    paying_site = SiteMinimalSerializer(read_only=True)
    items = BatchLineItemSerializer(many=True, read_only=True)

    class Meta:
        model = GroupStockBatch
        fields = [
            'id',
            'ref_code',
            'site_group',
            'paying_site',
            'total_amount',
            'original_quantity',
            'remaining_quantity',
            'status',
            'purchase_date',
            'vendor_name',
            'is_vendor_paid',
            'notes',
            'recorded_by',
            'completed_at',
            'completed_by',
            'items',
            'created_at',
        ]
        read_only_fields = fields


class UsageAllocationSerializer(serializers.ModelSerializer):

    is_settled = serializers.BooleanField(read_only=True)

    class Meta:
        model = BatchUsageAllocation
        fields = [
            'id',
            'batch',
            'site',
            'transaction',
            'material_id',
            'quantity_used',
            'unit_cost',
            'amount',
            'usage_date',
            'is_payer',
            'settlement',
            'is_settled',
        ]
        read_only_fields = fields


class BatchAllocationSerializer(serializers.Serializer):
    """Serializes a computed BatchAllocation."""

    batch_id = serializers.UUIDField()
    paying_site_id = serializers.UUIDField()
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    used_by_others = serializers.DecimalField(max_digits=14, decimal_places=2)
    payer_remainder = serializers.DecimalField(max_digits=14, decimal_places=2)
    materials = serializers.SerializerMethodField()
    site_usage = serializers.SerializerMethodField()

    def get_materials(self, obj):
        return [
            {
                'material_id': m.material_id,
                'quantity': m.quantity,
                'used_by_others': m.used_by_others,
                'used_by_payer': m.used_by_payer,
                'remaining_quantity': m.remaining_quantity,
                'unallocated_quantity': m.unallocated_quantity,
            }
            for m in obj.materials.values()
        ]

    def get_site_usage(self, obj):
        return [
            {
                'site_id': row.site_id,
                'amount': row.amount,
                'quantity': row.quantity,
                'is_payer': row.is_payer,
            }
            for row in obj.site_usage
        ]
