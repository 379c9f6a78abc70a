"""
Balance aggregation.

Builds the "who owes whom, how much, for which week" view from unsettled
usage allocations. Balances are never stored; they are recomputed from the
ledger on every read.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

ZERO = Decimal('0')


@dataclass(frozen=True)
class InterSiteBalance:
    site_group_id: UUID
    creditor_site_id: UUID
    debtor_site_id: UUID
    year: int
    week_number: int
    week_start: date
    week_end: date
    total_amount_owed: Decimal
    total_quantity: Decimal
    transaction_count: int
    has_unpaid_vendor: bool
    allocation_ids: Tuple[UUID, ...]
    batch_ids: Tuple[UUID, ...]

    @property
    def key(self):
        return (self.creditor_site_id, self.debtor_site_id, self.year, self.week_number)


def week_bounds(year: int, week: int) -> Tuple[date, date]:
    """Monday and Sunday of an ISO week."""
    start = date.fromisocalendar(year, week, 1)
    return start, start + timedelta(days=6)


def aggregate_balances(allocations: Iterable, *, site_group_id: Optional[UUID] = None) -> List[InterSiteBalance]:
    """
    Group unsettled usage allocations into inter-site balances.

    Key is (creditor = batch paying site, debtor = allocation site, ISO year,
    ISO week of the usage date). Payer rows, claimed rows and self-use rows
    are skipped. Each allocation must have ``batch`` loaded.
    """
    groups = OrderedDict()
    for allocation in allocations:
        if allocation.is_payer or allocation.settlement_id is not None:
            continue
        batch = allocation.batch
        creditor_id = batch.paying_site_id
        debtor_id = allocation.site_id
        if creditor_id == debtor_id:
            continue

        iso_year, iso_week, _ = allocation.usage_date.isocalendar()
        key = (creditor_id, debtor_id, iso_year, iso_week)
        entry = groups.get(key)
        if entry is None:
            entry = {
                'site_group_id': site_group_id or allocation.site_group_id,
                'amount': ZERO,
                'quantity': ZERO,
                'allocation_ids': [],
                'batch_ids': [],
                'has_unpaid_vendor': False,
            }
            groups[key] = entry

        entry['amount'] += allocation.amount
        entry['quantity'] += allocation.quantity_used
        entry['allocation_ids'].append(allocation.id)
        if batch.id not in entry['batch_ids']:
            entry['batch_ids'].append(batch.id)
        if not batch.is_vendor_paid:
            entry['has_unpaid_vendor'] = True

    balances = []
    for (creditor_id, debtor_id, iso_year, iso_week), entry in groups.items():
        week_start, week_end = week_bounds(iso_year, iso_week)
        balances.append(InterSiteBalance(
            site_group_id=entry['site_group_id'],
            creditor_site_id=creditor_id,
            debtor_site_id=debtor_id,
            year=iso_year,
            week_number=iso_week,
            week_start=week_start,
            week_end=week_end,
            total_amount_owed=entry['amount'],
            total_quantity=entry['quantity'],
            transaction_count=len(entry['allocation_ids']),
            has_unpaid_vendor=entry['has_unpaid_vendor'],
            allocation_ids=tuple(entry['allocation_ids']),
            batch_ids=tuple(entry['batch_ids']),
        ))
    return balances


def unsettled_allocations(*, store, group_id: UUID, **filters) -> list:
    """Unsettled, non-payer usage allocations of a group."""
    lookup = {
        'site_group_id': group_id,
        'is_payer': False,
        'settlement__isnull': True,
    }
    lookup.update(filters)
    return store.query('allocations', lookup, related=('batch',))


def list_balances(*, store, group_id: UUID) -> List[InterSiteBalance]:
    """All current inter-site balances of a site group."""
    return aggregate_balances(
        unsettled_allocations(store=store, group_id=group_id),
        site_group_id=group_id,
    )


def find_balance(
    *,
    store,
    group_id: UUID,
    creditor_site_id: UUID,
    debtor_site_id: UUID,
    week: int,
    year: int
) -> Optional[InterSiteBalance]:
    """
    Return the balance for one (creditor, debtor, week, year) key, or None.

    A week the year does not have (week 53 of 2023) has no balance.
    """
    try:
        week_start, week_end = week_bounds(year, week)
    except ValueError:
        return None
    allocations = unsettled_allocations(
        store=store,
        group_id=group_id,
        site_id=debtor_site_id,
        batch__paying_site_id=creditor_site_id,
        usage_date__gte=week_start,
        usage_date__lte=week_end,
    )
    # The date range is exactly one ISO week, so at most one balance remains.
    balances = aggregate_balances(allocations, site_group_id=group_id)
    return balances[0] if balances else None
