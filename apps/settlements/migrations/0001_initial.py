# Generated manually for settlements app

import uuid
from decimal import Decimal
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('sites', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='GroupStockBatch',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('ref_code', models.CharField(db_index=True, max_length=50, unique=True)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=14, validators=[MinValueValidator(Decimal('0.00'))])),
                ('original_quantity', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=14)),
                ('remaining_quantity', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=14)),
                ('status', models.CharField(choices=[('recorded', 'Recorded'), ('partial_used', 'Partially used'), ('completed', 'Completed')], default='recorded', max_length=20)),
                ('purchase_date', models.DateField()),
                ('vendor_name', models.CharField(blank=True, max_length=200)),
                ('is_vendor_paid', models.BooleanField(default=False)),
                ('notes', models.TextField(blank=True)),
                ('recorded_by', models.CharField(blank=True, max_length=150)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_by', models.CharField(blank=True, max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('paying_site', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='paid_batches', to='sites.site')),
                ('site_group', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='stock_batches', to='sites.sitegroup')),
            ],
            options={
                'db_table': 'group_stock_batches',
                'ordering': ['-purchase_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['site_group', 'status'], name='batch_group_status_idx'),
                    models.Index(fields=['paying_site', 'purchase_date'], name='batch_payer_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='BatchLineItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('material_id', models.CharField(max_length=64)),
                ('material_name', models.CharField(blank=True, max_length=200)),
                ('unit', models.CharField(default='nos', max_length=20)),
                ('quantity', models.DecimalField(decimal_places=3, max_digits=14, validators=[MinValueValidator(Decimal('0.001'))])),
                ('unit_cost', models.DecimalField(decimal_places=4, max_digits=14)),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='settlements.groupstockbatch')),
            ],
            options={
                'db_table': 'group_stock_batch_items',
                'ordering': ['material_id'],
            },
        ),
        migrations.CreateModel(
            name='GroupStockTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('transaction_type', models.CharField(choices=[('purchase', 'Purchase'), ('usage', 'Usage')], max_length=20)),
                ('material_id', models.CharField(max_length=64)),
                ('quantity', models.DecimalField(decimal_places=3, max_digits=14)),
                ('unit_cost', models.DecimalField(decimal_places=4, max_digits=14)),
                ('total_cost', models.DecimalField(decimal_places=2, max_digits=14)),
                ('transaction_date', models.DateField()),
                ('notes', models.TextField(blank=True)),
                ('recorded_by', models.CharField(blank=True, max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transactions', to='settlements.groupstockbatch')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='stock_transactions', to='sites.site')),
                ('site_group', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='stock_transactions', to='sites.sitegroup')),
            ],
            options={
                'db_table': 'group_stock_transactions',
                'ordering': ['-transaction_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['site_group', 'transaction_type'], name='txn_group_type_idx'),
                    models.Index(fields=['batch', 'transaction_type'], name='txn_batch_type_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='InterSiteSettlement',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('settlement_code', models.CharField(db_index=True, max_length=60, unique=True)),
                ('year', models.PositiveIntegerField()),
                ('week_number', models.PositiveSmallIntegerField()),
                ('period_start', models.DateField()),
                ('period_end', models.DateField()),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('settled', 'Settled'), ('cancelled', 'Cancelled')], default='pending', max_length=20)),
                ('notes', models.TextField(blank=True)),
                ('created_by', models.CharField(blank=True, max_length=150)),
                ('approved_by', models.CharField(blank=True, max_length=150)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('settled_by', models.CharField(blank=True, max_length=150)),
                ('settled_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_by', models.CharField(blank=True, max_length=150)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('batch', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='settlements', to='settlements.groupstockbatch')),
                ('from_site', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='settlements_receivable', to='sites.site')),
                ('site_group', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='settlements', to='sites.sitegroup')),
                ('to_site', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='settlements_payable', to='sites.site')),
            ],
            options={
                'db_table': 'inter_site_settlements',
                'ordering': ['-year', '-week_number', '-created_at'],
                'indexes': [
                    models.Index(fields=['site_group', 'status'], name='settle_group_status_idx'),
                    models.Index(fields=['from_site', 'status'], name='settle_from_status_idx'),
                    models.Index(fields=['to_site', 'status'], name='settle_to_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SettlementPayment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14, validators=[MinValueValidator(Decimal('0.01'))])),
                ('payment_date', models.DateField()),
                ('payment_mode', models.CharField(choices=[('cash', 'Cash'), ('upi', 'UPI'), ('bank_transfer', 'Bank transfer'), ('cheque', 'Cheque'), ('adjustment', 'Adjustment')], max_length=20)),
                ('payer_source', models.CharField(blank=True, max_length=100)),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('recorded_by', models.CharField(blank=True, max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('settlement', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='settlements.intersitesettlement')),
            ],
            options={
                'db_table': 'inter_site_settlement_payments',
                'ordering': ['-payment_date', '-created_at'],
            },
        ),
        migrations.CreateModel(
            name='BatchUsageAllocation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('material_id', models.CharField(max_length=64)),
                ('quantity_used', models.DecimalField(decimal_places=3, max_digits=14)),
                ('unit_cost', models.DecimalField(decimal_places=4, max_digits=14)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('usage_date', models.DateField()),
                ('is_payer', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='allocations', to='settlements.groupstockbatch')),
                ('settlement', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='allocations', to='settlements.intersitesettlement')),
                ('site', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='usage_allocations', to='sites.site')),
                ('site_group', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='usage_allocations', to='sites.sitegroup')),
                ('transaction', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='allocations', to='settlements.groupstocktransaction')),
            ],
            options={
                'db_table': 'batch_usage_allocations',
                'ordering': ['usage_date', 'created_at'],
                'indexes': [
                    models.Index(fields=['site_group', 'settlement'], name='alloc_group_settlement_idx'),
                    models.Index(fields=['batch', 'site'], name='alloc_batch_site_idx'),
                ],
            },
        ),
    ]
