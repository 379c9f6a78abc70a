"""
Management command to audit the settlement ledger.

Checks every batch for over-allocation and every settlement against the
allocations it claims:
- no batch has more usage allocated than was purchased
- no allocation is claimed by a cancelled settlement
- a live settlement's total equals the sum of its claimed allocations
- a settled settlement's paid amount equals the sum of its payments

Usage:
    python manage.py audit_settlements
    python manage.py audit_settlements --group <site-group-id>
"""

from collections import defaultdict
from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Sum

from apps.settlements.models import SettlementStatus
from apps.settlements.services import LedgerStore, NegativeRemainderError, allocate_batch


class Command(BaseCommand):
    help = 'Audit batches and settlements for ledger inconsistencies'

    def add_arguments(self, parser):
        parser.add_argument(
            '--group',
            help='Only audit this site group',
        )

    def handle(self, *args, **options):
        store = LedgerStore()
        group_filter = {'site_group_id': options['group']} if options['group'] else {}
        findings = []

        items_by_batch = defaultdict(list)
        for item in store.query('batch_items', {f'batch__{k}': v for k, v in group_filter.items()}):
            items_by_batch[item.batch_id].append(item)
        allocations_by_batch = defaultdict(list)
        for allocation in store.query('allocations', group_filter):
            allocations_by_batch[allocation.batch_id].append(allocation)

        batches = store.query('batches', group_filter)
        for batch in batches:
            try:
                allocate_batch(batch, items_by_batch[batch.id], allocations_by_batch[batch.id])
            except NegativeRemainderError as e:
                findings.append(f'Batch {batch.ref_code}: {e.message}')

        claimed = defaultdict(lambda: Decimal('0'))
        for allocations in allocations_by_batch.values():
            for allocation in allocations:
                if allocation.is_settled:
                    claimed[allocation.settlement_id] += allocation.amount

        settlements = store.query('settlements', group_filter)
        for settlement in settlements:
            code = settlement.settlement_code
            if not settlement.is_live:
                if settlement.id in claimed:
                    findings.append(f'Settlement {code}: cancelled but still claims allocations')
                continue

            if claimed[settlement.id] != settlement.total_amount:
                findings.append(
                    f'Settlement {code}: total {settlement.total_amount} '
                    f'but claimed allocations sum to {claimed[settlement.id]}'
                )

            if settlement.status == SettlementStatus.SETTLED:
                paid = store.aggregate(
                    'payments', {'settlement_id': settlement.id}, total=Sum('amount')
                )['total'] or Decimal('0')
                if paid != settlement.paid_amount:
                    findings.append(
                        f'Settlement {code}: paid_amount {settlement.paid_amount} '
                        f'but payments sum to {paid}'
                    )

        self.stdout.write(
            f'\nAudited {len(batches)} batch(es) and {len(settlements)} settlement(s)\n'
        )

        if not findings:
            self.stdout.write(self.style.SUCCESS('No inconsistencies found.'))
            return

        for finding in findings:
            self.stdout.write(self.style.WARNING(f'  - {finding}'))
        raise CommandError(f'{len(findings)} inconsistenc{"y" if len(findings) == 1 else "ies"} found')
