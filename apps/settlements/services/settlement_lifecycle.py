"""
Settlement lifecycle management.

pending -> approved -> settled -> cancelled, with pending and approved also
allowed to go straight to settled or cancelled. Generating a settlement claims
the unsettled allocations behind a balance; cancelling releases them again.
Every operation runs in a single ledger transaction.
"""

import logging
import secrets
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from django.conf import settings
from django.utils import timezone

from apps.settlements.models import BatchStatus, PaymentMode, SettlementStatus

from .balance_aggregation import find_balance, unsettled_allocations, week_bounds
from .exceptions import (
    AllocationClaimedError,
    BatchCompletedError,
    InvalidNetSettlementError,
    InvalidPaymentError,
    InvalidTransitionError,
    NoBalanceFoundError,
    SettlementNotFoundError,
    VendorUnpaidError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

PAYABLE_STATES = (SettlementStatus.PENDING, SettlementStatus.APPROVED)


def generate_settlement_code(year: int, week: int) -> str:
    return f"SET-{year}-W{week:02d}-{secrets.token_hex(4).upper()}"


def vendor_check_enabled(require_vendor_paid: Optional[bool] = None) -> bool:
    if require_vendor_paid is not None:
        return require_vendor_paid
    return getattr(settings, 'SETTLEMENTS', {}).get('REQUIRE_VENDOR_PAID', False)


def _lock_settlement(store, settlement_id):
    settlement = store.get('settlements', settlement_id, for_update=True)
    if settlement is None:
        raise SettlementNotFoundError(
            f"Settlement with ID {settlement_id} not found",
            settlement_id=settlement_id,
        )
    return settlement


def _require_status(settlement, allowed, operation):
    if settlement.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {operation} settlement {settlement.settlement_code} "
            f"in status '{settlement.status}'",
            settlement_id=settlement.id,
            status=settlement.status,
            operation=operation,
        )


def _release_allocations(store, settlement_id) -> int:
    return store.update_where(
        'allocations',
        {'settlement_id': settlement_id},
        {'settlement': None},
    )


def _apply_payment(
    store,
    settlement,
    *,
    amount: Decimal,
    payment_mode: str,
    payer_source: str,
    actor: str,
    payment_date: Optional[date],
    reference_number: str,
    notes: str,
    settle: bool
):
    store.insert('payments', {
        'settlement_id': settlement.id,
        'amount': amount,
        'payment_date': payment_date or timezone.localdate(),
        'payment_mode': payment_mode,
        'payer_source': payer_source,
        'reference_number': reference_number,
        'notes': notes,
        'recorded_by': actor,
    })
    patch = {'paid_amount': settlement.paid_amount + amount}
    if settle:
        patch.update({
            'status': SettlementStatus.SETTLED,
            'settled_at': timezone.now(),
            'settled_by': actor,
        })
    store.update('settlements', settlement.id, patch)
    return store.get('settlements', settlement.id)


def generate_settlement(
    *,
    store,
    group_id: UUID,
    creditor_site_id: UUID,
    debtor_site_id: UUID,
    week: int,
    year: int,
    actor: str = '',
    require_vendor_paid: Optional[bool] = None,
    notes: str = ''
):
    """
    Turn the current balance for a (creditor, debtor, week, year) key into a
    pending settlement.

    The settlement row and the claim of its allocations commit together. The
    claim only touches allocations that are still unsettled; if another
    settlement got to any of them first, nothing is written.

    Raises:
        NoBalanceFoundError: If nothing is left to settle for the key, or a
            concurrent generation claimed part of it first
        VendorUnpaidError: If vendor gating is on and a contributing batch's
            vendor has not been paid
    """
    with store.atomic():
        balance = find_balance(
            store=store,
            group_id=group_id,
            creditor_site_id=creditor_site_id,
            debtor_site_id=debtor_site_id,
            week=week,
            year=year,
        )
        if balance is None:
            raise NoBalanceFoundError(
                f"No unsettled balance for week {week}/{year}",
                group_id=group_id,
                creditor_site_id=creditor_site_id,
                debtor_site_id=debtor_site_id,
                week=week,
                year=year,
            )

        if vendor_check_enabled(require_vendor_paid) and balance.has_unpaid_vendor:
            unpaid = store.query('batches', {'id__in': balance.batch_ids, 'is_vendor_paid': False})
            raise VendorUnpaidError(
                "Vendor payment is still open for batches: "
                + ", ".join(batch.ref_code for batch in unpaid),
                batch_codes=[batch.ref_code for batch in unpaid],
            )

        period_start, period_end = week_bounds(year, week)
        settlement = store.insert('settlements', {
            'settlement_code': generate_settlement_code(year, week),
            'site_group_id': balance.site_group_id,
            'from_site_id': balance.creditor_site_id,
            'to_site_id': balance.debtor_site_id,
            'batch_id': balance.batch_ids[0] if len(balance.batch_ids) == 1 else None,
            'year': year,
            'week_number': week,
            'period_start': period_start,
            'period_end': period_end,
            'total_amount': balance.total_amount_owed,
            'status': SettlementStatus.PENDING,
            'notes': notes,
            'created_by': actor,
        })

        claimed = store.update_where(
            'allocations',
            {'id__in': balance.allocation_ids, 'settlement__isnull': True},
            {'settlement_id': settlement.id},
        )
        if claimed != len(balance.allocation_ids):
            logger.warning(
                "Lost claim race for settlement %s: claimed %d of %d allocations",
                settlement.settlement_code, claimed, len(balance.allocation_ids)
            )
            raise NoBalanceFoundError(
                "Balance changed while generating the settlement; refresh and retry",
                group_id=group_id,
                creditor_site_id=creditor_site_id,
                debtor_site_id=debtor_site_id,
                week=week,
                year=year,
                expected=len(balance.allocation_ids),
                claimed=claimed,
            )

    logger.info(
        "Generated settlement %s: site %s owes site %s %s for week %s/%s",
        settlement.settlement_code, balance.debtor_site_id, balance.creditor_site_id,
        balance.total_amount_owed, week, year
    )
    return settlement


def approve_settlement(*, store, settlement_id: UUID, actor: str = ''):
    """Administrative acknowledgement of a pending settlement."""
    with store.atomic():
        settlement = _lock_settlement(store, settlement_id)
        _require_status(settlement, (SettlementStatus.PENDING,), 'approve')
        store.update('settlements', settlement.id, {
            'status': SettlementStatus.APPROVED,
            'approved_at': timezone.now(),
            'approved_by': actor,
        })

    logger.info("Approved settlement %s by %s", settlement.settlement_code, actor or 'unknown')
    return store.get('settlements', settlement.id)


def record_payment(
    *,
    store,
    settlement_id: UUID,
    amount: Decimal,
    payment_mode: str = PaymentMode.CASH,
    payer_source: str = '',
    actor: str = '',
    payment_date: Optional[date] = None,
    reference_number: str = '',
    notes: str = ''
):
    """
    Record a payment and mark the settlement settled.

    Partial payments are accepted: the settlement is settled with
    ``paid_amount`` below ``total_amount``.

    Raises:
        SettlementNotFoundError: If settlement doesn't exist
        InvalidTransitionError: If settlement is not pending or approved
        InvalidPaymentError: If amount is not positive, exceeds what is still
            open, or the payment mode is unknown
    """
    amount = Decimal(amount)
    if amount <= ZERO:
        raise InvalidPaymentError("Payment amount must be positive", amount=amount)
    if payment_mode not in PaymentMode.values:
        raise InvalidPaymentError(f"Unknown payment mode '{payment_mode}'", payment_mode=payment_mode)

    with store.atomic():
        settlement = _lock_settlement(store, settlement_id)
        _require_status(settlement, PAYABLE_STATES, 'record payment on')
        if amount > settlement.pending_amount:
            raise InvalidPaymentError(
                f"Payment {amount} exceeds pending amount {settlement.pending_amount}",
                settlement_id=settlement.id,
                amount=amount,
                pending_amount=settlement.pending_amount,
            )
        settlement = _apply_payment(
            store,
            settlement,
            amount=amount,
            payment_mode=payment_mode,
            payer_source=payer_source,
            actor=actor,
            payment_date=payment_date,
            reference_number=reference_number,
            notes=notes,
            settle=True,
        )

    logger.info(
        "Recorded payment of %s (%s) on settlement %s",
        amount, payment_mode, settlement.settlement_code
    )
    return settlement


def _cancel(store, settlement, reason, actor):
    store.delete_where('payments', {'settlement_id': settlement.id})
    released = _release_allocations(store, settlement.id)
    store.update('settlements', settlement.id, {
        'status': SettlementStatus.CANCELLED,
        'paid_amount': ZERO,
        'settled_at': None,
        'settled_by': '',
        'cancelled_at': timezone.now(),
        'cancelled_by': actor,
        'cancellation_reason': reason,
    })
    return released


def cancel_settlement(*, store, settlement_id: UUID, reason: str = '', actor: str = ''):
    """
    Cancel a pending or approved settlement.

    Its allocations go back to the unsettled pool and show up again in the
    next balance read.
    """
    with store.atomic():
        settlement = _lock_settlement(store, settlement_id)
        _require_status(settlement, PAYABLE_STATES, 'cancel')
        released = _cancel(store, settlement, reason, actor)

    logger.info(
        "Cancelled settlement %s (%s), released %d allocation(s)",
        settlement.settlement_code, settlement.status, released
    )
    return store.get('settlements', settlement.id)


def cancel_settled_settlement(*, store, settlement_id: UUID, reason: str = '', actor: str = ''):
    """
    Reverse a settled settlement.

    Payment rows are deleted rather than offset, so the original payment is
    not kept anywhere.
    """
    with store.atomic():
        settlement = _lock_settlement(store, settlement_id)
        _require_status(settlement, (SettlementStatus.SETTLED,), 'reverse')
        released = _cancel(store, settlement, reason, actor)

    logger.warning(
        "Reversed settled settlement %s (paid %s) by %s, released %d allocation(s)",
        settlement.settlement_code, settlement.paid_amount, actor or 'unknown', released
    )
    return store.get('settlements', settlement.id)


def delete_settlement(*, store, settlement_id: UUID, actor: str = '') -> None:
    """Hard-delete a cancelled settlement."""
    with store.atomic():
        settlement = _lock_settlement(store, settlement_id)
        _require_status(settlement, (SettlementStatus.CANCELLED,), 'delete')
        store.delete('settlements', settlement.id)

    logger.info("Deleted settlement %s by %s", settlement.settlement_code, actor or 'unknown')


def delete_unsettled_usage(
    *,
    store,
    group_id: UUID,
    creditor_site_id: UUID,
    debtor_site_id: UUID,
    actor: str = ''
) -> Dict[str, Any]:
    """
    Undo the usage behind an unsettled creditor/debtor balance.

    Deletes the pair's unsettled usage allocations with their usage
    transactions and puts the quantity back on each batch. Usage already
    claimed by a settlement stays in place with its settlement.

    Raises:
        AllocationClaimedError: If all of the pair's usage is claimed by
            settlements, or a claim lands while this runs
        BatchCompletedError: If any of the usage sits on a completed batch
        NoBalanceFoundError: If the pair has no usage at all
    """
    pair = {
        'site_group_id': group_id,
        'site_id': debtor_site_id,
        'batch__paying_site_id': creditor_site_id,
        'is_payer': False,
    }

    with store.atomic():
        targets = unsettled_allocations(
            store=store,
            group_id=group_id,
            site_id=debtor_site_id,
            batch__paying_site_id=creditor_site_id,
        )
        if not targets:
            claimed = store.query('allocations', {**pair, 'settlement__isnull': False}, related=('settlement',))
            if claimed:
                codes = sorted({a.settlement.settlement_code for a in claimed})
                raise AllocationClaimedError(
                    "Usage is claimed by settlement(s) " + ", ".join(codes) + "; cancel them first",
                    group_id=group_id,
                    creditor_site_id=creditor_site_id,
                    debtor_site_id=debtor_site_id,
                    settlement_codes=codes,
                )
            raise NoBalanceFoundError(
                "No unsettled usage for this site pair",
                group_id=group_id,
                creditor_site_id=creditor_site_id,
                debtor_site_id=debtor_site_id,
            )

        ids = [allocation.id for allocation in targets]
        restored = defaultdict(lambda: ZERO)
        for allocation in targets:
            restored[allocation.batch_id] += allocation.quantity_used
        transaction_ids = [a.transaction_id for a in targets if a.transaction_id]

        batches = {batch_id: store.get('batches', batch_id, for_update=True) for batch_id in restored}
        completed = sorted(batch.ref_code for batch in batches.values() if batch.is_completed)
        if completed:
            raise BatchCompletedError(
                "Usage on completed batch(es) " + ", ".join(completed) + " cannot be deleted",
                group_id=group_id,
                creditor_site_id=creditor_site_id,
                debtor_site_id=debtor_site_id,
                batch_codes=completed,
            )

        deleted = store.delete_where('allocations', {'id__in': ids, 'settlement__isnull': True})
        if deleted != len(ids):
            raise AllocationClaimedError(
                "Usage was claimed by a settlement while deleting; nothing was removed",
                group_id=group_id,
                creditor_site_id=creditor_site_id,
                debtor_site_id=debtor_site_id,
            )
        if transaction_ids:
            store.delete_where('transactions', {'id__in': transaction_ids})

        for batch_id, quantity in restored.items():
            batch = batches[batch_id]
            patch = {'remaining_quantity': batch.remaining_quantity + quantity}
            if batch.status == BatchStatus.PARTIAL_USED and not store.query(
                'allocations', {'batch_id': batch_id}, limit=1
            ):
                patch['status'] = BatchStatus.RECORDED
            store.update('batches', batch_id, patch)

    logger.warning(
        "Deleted %d unsettled usage allocation(s) of site %s against site %s by %s",
        len(ids), debtor_site_id, creditor_site_id, actor or 'unknown'
    )
    return {
        'deleted_count': len(ids),
        'restored_quantities': {str(batch_id): qty for batch_id, qty in restored.items()},
    }


def net_settle(
    *,
    store,
    group_id: UUID,
    site_a_id: UUID,
    site_b_id: UUID,
    week: int,
    year: int,
    actor: str = '',
    net_payment: Optional[Dict[str, Any]] = None,
    require_vendor_paid: Optional[bool] = None
) -> Dict[str, Any]:
    """
    Offset two reciprocal balances of the same week against each other.

    Both balances become settlements. Each gets an ``adjustment`` payment of
    the smaller amount. The smaller settlement (both, when equal) is settled
    outright; the larger one stays open for the net difference unless
    ``net_payment`` is given, in which case the difference is paid too.

    ``net_payment`` keys: payment_mode, payer_source, reference_number,
    notes, payment_date.

    Raises:
        InvalidNetSettlementError: If either direction has no balance
    """
    if net_payment and net_payment.get('payment_mode', PaymentMode.CASH) not in PaymentMode.values:
        raise InvalidPaymentError(
            f"Unknown payment mode '{net_payment['payment_mode']}'",
            payment_mode=net_payment['payment_mode'],
        )

    with store.atomic():
        a_owes_b = find_balance(
            store=store, group_id=group_id,
            creditor_site_id=site_b_id, debtor_site_id=site_a_id,
            week=week, year=year,
        )
        b_owes_a = find_balance(
            store=store, group_id=group_id,
            creditor_site_id=site_a_id, debtor_site_id=site_b_id,
            week=week, year=year,
        )
        if a_owes_b is None or b_owes_a is None:
            raise InvalidNetSettlementError(
                "Net settlement needs balances in both directions for the same week",
                group_id=group_id,
                site_a_id=site_a_id,
                site_b_id=site_b_id,
                week=week,
                year=year,
            )

        settlements = [
            generate_settlement(
                store=store, group_id=group_id,
                creditor_site_id=balance.creditor_site_id,
                debtor_site_id=balance.debtor_site_id,
                week=week, year=year, actor=actor,
                require_vendor_paid=require_vendor_paid,
                notes='Net settlement',
            )
            for balance in (a_owes_b, b_owes_a)
        ]
        offset = min(s.total_amount for s in settlements)

        results = []
        for settlement in settlements:
            fully_offset = settlement.total_amount == offset
            settlement = _apply_payment(
                store,
                settlement,
                amount=offset,
                payment_mode=PaymentMode.ADJUSTMENT,
                payer_source='net_settlement',
                actor=actor,
                payment_date=None,
                reference_number='',
                notes='Offset against reciprocal balance',
                settle=fully_offset,
            )
            if not fully_offset and net_payment:
                settlement = _apply_payment(
                    store,
                    settlement,
                    amount=settlement.pending_amount,
                    payment_mode=net_payment.get('payment_mode', PaymentMode.CASH),
                    payer_source=net_payment.get('payer_source', ''),
                    actor=actor,
                    payment_date=net_payment.get('payment_date'),
                    reference_number=net_payment.get('reference_number', ''),
                    notes=net_payment.get('notes', ''),
                    settle=True,
                )
            results.append(settlement)

    net_amount = max(s.total_amount for s in results) - offset
    logger.info(
        "Net settled sites %s and %s for week %s/%s: offset %s, net %s",
        site_a_id, site_b_id, week, year, offset, net_amount
    )
    return {
        'offset_amount': offset,
        'net_amount': net_amount,
        'settlements': results,
    }
