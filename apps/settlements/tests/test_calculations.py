"""
Unit tests for the pure batch allocation and balance aggregation functions.

No database access: batches and allocations are plain objects.
"""

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from apps.settlements.services import (
    NegativeRemainderError,
    aggregate_balances,
    allocate_batch,
    week_bounds,
)


SITE_A = uuid4()
SITE_B = uuid4()
SITE_C = uuid4()
GROUP = uuid4()


def make_batch(total='10000', paying_site=SITE_A, vendor_paid=True):
    return SimpleNamespace(
        id=uuid4(),
        total_amount=Decimal(total),
        paying_site_id=paying_site,
        is_vendor_paid=vendor_paid,
    )


def make_item(material_id='bricks', quantity='1000'):
    return SimpleNamespace(material_id=material_id, quantity=Decimal(quantity))


def make_allocation(batch, site_id, amount, quantity, material_id='bricks',
                    usage_date=date(2024, 1, 10), is_payer=False, settlement_id=None):
    return SimpleNamespace(
        id=uuid4(),
        batch=batch,
        batch_id=batch.id,
        site_id=site_id,
        site_group_id=GROUP,
        material_id=material_id,
        amount=Decimal(amount),
        quantity_used=Decimal(quantity),
        usage_date=usage_date,
        is_payer=is_payer,
        settlement_id=settlement_id,
    )


# =============================================================================
# Batch Allocation
# =============================================================================

class TestAllocateBatch:
    """Tests for allocate_batch()."""

    def test_payer_remainder_is_total_minus_others(self):
        """Site B using 3,000 of a 10,000 batch leaves 7,000 to the payer."""
        batch = make_batch()
        split = allocate_batch(
            batch,
            [make_item()],
            [make_allocation(batch, SITE_B, '3000', '300')],
        )

        assert split.used_by_others == Decimal('3000')
        assert split.payer_remainder == Decimal('7000')
        assert split.materials['bricks'].remaining_quantity == Decimal('700')

    def test_conservation_over_several_sites(self):
        """Others' usage plus payer remainder always adds up to the total."""
        batch = make_batch()
        allocations = [
            make_allocation(batch, SITE_B, '1250.50', '125.05'),
            make_allocation(batch, SITE_C, '999.50', '99.95'),
            make_allocation(batch, SITE_B, '400', '40'),
        ]
        split = allocate_batch(batch, [make_item()], allocations)

        assert split.used_by_others + split.payer_remainder == batch.total_amount

    def test_payer_own_allocations_do_not_reduce_remainder(self):
        """Usage recorded by the paying site is part of its remainder."""
        batch = make_batch()
        allocations = [
            make_allocation(batch, SITE_B, '3000', '300'),
            make_allocation(batch, SITE_A, '2000', '200', is_payer=True),
        ]
        split = allocate_batch(batch, [make_item()], allocations)

        assert split.payer_remainder == Decimal('7000')
        assert split.materials['bricks'].remaining_quantity == Decimal('700')
        assert split.materials['bricks'].unallocated_quantity == Decimal('500')

    def test_site_usage_lists_payer_first(self):
        batch = make_batch()
        split = allocate_batch(
            batch,
            [make_item()],
            [make_allocation(batch, SITE_B, '3000', '300')],
        )

        payer, other = split.site_usage
        assert payer.site_id == SITE_A and payer.is_payer
        assert payer.amount == Decimal('7000')
        assert other.site_id == SITE_B and not other.is_payer
        assert other.amount == Decimal('3000')

    def test_negative_money_remainder_raises(self):
        """Over-allocation is reported, not clamped to zero."""
        batch = make_batch(total='1000')
        with pytest.raises(NegativeRemainderError) as exc_info:
            allocate_batch(
                batch,
                [make_item()],
                [make_allocation(batch, SITE_B, '1500', '150')],
            )

        assert exc_info.value.details['batch_id'] == batch.id

    def test_negative_quantity_remainder_raises(self):
        batch = make_batch()
        with pytest.raises(NegativeRemainderError) as exc_info:
            allocate_batch(
                batch,
                [make_item(quantity='100')],
                [make_allocation(batch, SITE_B, '1500', '150')],
            )

        assert exc_info.value.details['material_id'] == 'bricks'

    def test_per_material_remainders(self):
        batch = make_batch(total='15000')
        split = allocate_batch(
            batch,
            [make_item('bricks', '1000'), make_item('cement', '100')],
            [
                make_allocation(batch, SITE_B, '3000', '300', material_id='bricks'),
                make_allocation(batch, SITE_B, '500', '10', material_id='cement'),
            ],
        )

        assert split.remaining_for('bricks') == Decimal('700')
        assert split.remaining_for('cement') == Decimal('90')
        assert split.remaining_for('sand') == Decimal('0')


# =============================================================================
# Balance Aggregation
# =============================================================================

class TestAggregateBalances:
    """Tests for aggregate_balances()."""

    def test_single_usage_makes_one_balance(self):
        batch = make_batch()
        allocation = make_allocation(batch, SITE_B, '3000', '300')

        balances = aggregate_balances([allocation], site_group_id=GROUP)

        assert len(balances) == 1
        balance = balances[0]
        assert balance.creditor_site_id == SITE_A
        assert balance.debtor_site_id == SITE_B
        assert balance.total_amount_owed == Decimal('3000')
        assert balance.total_quantity == Decimal('300')
        assert balance.transaction_count == 1
        assert (balance.year, balance.week_number) == (2024, 2)
        assert balance.week_start == date(2024, 1, 8)
        assert balance.week_end == date(2024, 1, 14)
        assert balance.allocation_ids == (allocation.id,)

    def test_same_week_usages_are_summed(self):
        batch = make_batch()
        allocations = [
            make_allocation(batch, SITE_B, '1000', '100', usage_date=date(2024, 1, 8)),
            make_allocation(batch, SITE_B, '2000', '200', usage_date=date(2024, 1, 14)),
        ]

        balances = aggregate_balances(allocations)

        assert len(balances) == 1
        assert balances[0].total_amount_owed == Decimal('3000')
        assert balances[0].transaction_count == 2

    def test_weeks_are_split_on_monday(self):
        batch = make_batch()
        allocations = [
            make_allocation(batch, SITE_B, '1000', '100', usage_date=date(2024, 1, 14)),
            make_allocation(batch, SITE_B, '2000', '200', usage_date=date(2024, 1, 15)),
        ]

        balances = aggregate_balances(allocations)

        assert sorted(b.week_number for b in balances) == [2, 3]

    def test_iso_year_differs_from_calendar_year(self):
        """30 Dec 2024 falls in ISO week 1 of 2025."""
        batch = make_batch()
        allocation = make_allocation(batch, SITE_B, '500', '50', usage_date=date(2024, 12, 30))

        balance = aggregate_balances([allocation])[0]

        assert (balance.year, balance.week_number) == (2025, 1)

    def test_self_use_payer_and_claimed_rows_are_skipped(self):
        batch = make_batch()
        allocations = [
            make_allocation(batch, SITE_A, '2000', '200'),
            make_allocation(batch, SITE_A, '1000', '100', is_payer=True),
            make_allocation(batch, SITE_B, '3000', '300', settlement_id=uuid4()),
        ]

        assert aggregate_balances(allocations) == []

    def test_creditor_is_each_batch_payer(self):
        """Two payers in one group produce separate balances for the same debtor."""
        batch_a = make_batch(paying_site=SITE_A)
        batch_c = make_batch(paying_site=SITE_C, vendor_paid=False)
        allocations = [
            make_allocation(batch_a, SITE_B, '3000', '300'),
            make_allocation(batch_c, SITE_B, '800', '80'),
        ]

        balances = {b.creditor_site_id: b for b in aggregate_balances(allocations)}

        assert balances[SITE_A].total_amount_owed == Decimal('3000')
        assert balances[SITE_A].has_unpaid_vendor is False
        assert balances[SITE_C].total_amount_owed == Decimal('800')
        assert balances[SITE_C].has_unpaid_vendor is True

    def test_week_bounds(self):
        assert week_bounds(2024, 1) == (date(2024, 1, 1), date(2024, 1, 7))
