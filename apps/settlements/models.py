# ==========================================
# apps/settlements/models.py
# ==========================================

from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import uuid


class BatchStatus(models.TextChoices):
    RECORDED = 'recorded', 'Recorded'
    PARTIAL_USED = 'partial_used', 'Partially used'
    COMPLETED = 'completed', 'Completed'


class TransactionType(models.TextChoices):
    PURCHASE = 'purchase', 'Purchase'
    USAGE = 'usage', 'Usage'


class SettlementStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    APPROVED = 'approved', 'Approved'
    SETTLED = 'settled', 'Settled'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentMode(models.TextChoices):
    CASH = 'cash', 'Cash'
    UPI = 'upi', 'UPI'
    BANK_TRANSFER = 'bank_transfer', 'Bank transfer'
    CHEQUE = 'cheque', 'Cheque'
    ADJUSTMENT = 'adjustment', 'Adjustment'


class GroupStockBatch(models.Model):
    """
    Material bought by one site on behalf of its site group.

    The paying site fronts the whole ``total_amount``. Other sites consume
    from the batch through usage allocations; whatever they do not use is
    the paying site's own share.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    ref_code = models.CharField(max_length=50, unique=True, db_index=True)
    site_group = models.ForeignKey(
        'sites.SiteGroup',
        on_delete=models.PROTECT,
        related_name='stock_batches'
    )
    paying_site = models.ForeignKey(
        'sites.Site',
        on_delete=models.PROTECT,
        related_name='paid_batches'
    )
    total_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    original_quantity = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal('0'))
    remaining_quantity = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal('0'))
    status = models.CharField(
        max_length=20,
        choices=BatchStatus.choices,
        default=BatchStatus.RECORDED
    )
    purchase_date = models.DateField()
    vendor_name = models.CharField(max_length=200, blank=True)
    is_vendor_paid = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    recorded_by = models.CharField(max_length=150, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'group_stock_batches'
        indexes = [
            models.Index(fields=['site_group', 'status'], name='batch_group_status_idx'),
            models.Index(fields=['paying_site', 'purchase_date'], name='batch_payer_date_idx'),
        ]
        ordering = ['-purchase_date', '-created_at']

    def __str__(self):
        return f"{self.ref_code} - {self.total_amount}"

    @property
    def is_completed(self):
        return self.status == BatchStatus.COMPLETED


class BatchLineItem(models.Model):
    """Single material line of a batch."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch = models.ForeignKey(GroupStockBatch, on_delete=models.CASCADE, related_name='items')
    material_id = models.CharField(max_length=64)
    material_name = models.CharField(max_length=200, blank=True)
    unit = models.CharField(max_length=20, default='nos')
    quantity = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))]
    )
    unit_cost = models.DecimalField(max_digits=14, decimal_places=4)

    class Meta:
        db_table = 'group_stock_batch_items'
        ordering = ['material_id']

    def __str__(self):
        return f"{self.material_name or self.material_id} x {self.quantity}"

    @property
    def line_total(self):
        return (self.quantity * self.unit_cost).quantize(Decimal('0.01'))


class GroupStockTransaction(models.Model):
    """Purchase or usage line in the group stock ledger."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction_type = models.CharField(max_length=20, choices=TransactionType.choices)
    site_group = models.ForeignKey(
        'sites.SiteGroup',
        on_delete=models.PROTECT,
        related_name='stock_transactions'
    )
    batch = models.ForeignKey(GroupStockBatch, on_delete=models.CASCADE, related_name='transactions')
    site = models.ForeignKey(
        'sites.Site',
        on_delete=models.PROTECT,
        related_name='stock_transactions'
    )
    material_id = models.CharField(max_length=64)
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=14, decimal_places=4)
    total_cost = models.DecimalField(max_digits=14, decimal_places=2)
    transaction_date = models.DateField()
    notes = models.TextField(blank=True)
    recorded_by = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'group_stock_transactions'
        indexes = [
            models.Index(fields=['site_group', 'transaction_type'], name='txn_group_type_idx'),
            models.Index(fields=['batch', 'transaction_type'], name='txn_batch_type_idx'),
        ]
        ordering = ['-transaction_date', '-created_at']

    def __str__(self):
        return f"{self.get_transaction_type_display()} {self.material_id} x {self.quantity}"


class BatchUsageAllocation(models.Model):
    """
    Share of a batch consumed by one site.

    ``settlement`` is null while the allocation is unsettled. Generating a
    settlement claims it; cancelling the settlement releases it again.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch = models.ForeignKey(GroupStockBatch, on_delete=models.CASCADE, related_name='allocations')
    site_group = models.ForeignKey(
        'sites.SiteGroup',
        on_delete=models.PROTECT,
        related_name='usage_allocations'
    )
    site = models.ForeignKey(
        'sites.Site',
        on_delete=models.PROTECT,
        related_name='usage_allocations'
    )
    transaction = models.ForeignKey(
        GroupStockTransaction,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='allocations'
    )
    material_id = models.CharField(max_length=64)
    quantity_used = models.DecimalField(max_digits=14, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=14, decimal_places=4)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    usage_date = models.DateField()
    is_payer = models.BooleanField(default=False)
    settlement = models.ForeignKey(
        'settlements.InterSiteSettlement',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='allocations'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'batch_usage_allocations'
        indexes = [
            models.Index(fields=['site_group', 'settlement'], name='alloc_group_settlement_idx'),
            models.Index(fields=['batch', 'site'], name='alloc_batch_site_idx'),
        ]
        ordering = ['usage_date', 'created_at']

    def __str__(self):
        return f"{self.site} used {self.quantity_used} of {self.batch.ref_code}"

    @property
    def is_settled(self):
        return self.settlement_id is not None


class InterSiteSettlement(models.Model):
    """
    Debt of one site (``to_site``) towards another (``from_site``) for one ISO week.

    ``from_site`` paid for the material, ``to_site`` used it.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    settlement_code = models.CharField(max_length=60, unique=True, db_index=True)
    site_group = models.ForeignKey(
        'sites.SiteGroup',
        on_delete=models.PROTECT,
        related_name='settlements'
    )
    from_site = models.ForeignKey(
        'sites.Site',
        on_delete=models.PROTECT,
        related_name='settlements_receivable'
    )
    to_site = models.ForeignKey(
        'sites.Site',
        on_delete=models.PROTECT,
        related_name='settlements_payable'
    )
    batch = models.ForeignKey(
        GroupStockBatch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='settlements'
    )
    year = models.PositiveIntegerField()
    week_number = models.PositiveSmallIntegerField()
    period_start = models.DateField()
    period_end = models.DateField()
    total_amount = models.DecimalField(max_digits=14, decimal_places=2)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(
        max_length=20,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING
    )
    notes = models.TextField(blank=True)
    created_by = models.CharField(max_length=150, blank=True)
    approved_by = models.CharField(max_length=150, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    settled_by = models.CharField(max_length=150, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=150, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'inter_site_settlements'
        indexes = [
            models.Index(fields=['site_group', 'status'], name='settle_group_status_idx'),
            models.Index(fields=['from_site', 'status'], name='settle_from_status_idx'),
            models.Index(fields=['to_site', 'status'], name='settle_to_status_idx'),
        ]
        ordering = ['-year', '-week_number', '-created_at']

    def __str__(self):
        return f"{self.settlement_code} ({self.get_status_display()})"

    @property
    def pending_amount(self):
        return self.total_amount - self.paid_amount

    @property
    def is_live(self):
        return self.status != SettlementStatus.CANCELLED


class SettlementPayment(models.Model):
    """Payment recorded against a settlement."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    settlement = models.ForeignKey(
        InterSiteSettlement,
        on_delete=models.CASCADE,
        related_name='payments'
    )
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    payment_date = models.DateField()
    payment_mode = models.CharField(max_length=20, choices=PaymentMode.choices)
    payer_source = models.CharField(max_length=100, blank=True)
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    recorded_by = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'inter_site_settlement_payments'
        ordering = ['-payment_date', '-created_at']

    def __str__(self):
        return f"{self.amount} via {self.get_payment_mode_display()}"
