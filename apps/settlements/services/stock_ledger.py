"""
Group stock ledger writes.

Records group purchases and usage, closes batches and deletes purchases.
Usage recorded here is what the balance aggregator later turns into debts.
"""

import logging
import secrets
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from django.utils import timezone

from apps.settlements.models import BatchStatus, TransactionType

from .batch_allocation import allocate_batch
from .exceptions import (
    BatchCompletedError,
    BatchNotFoundError,
    DuplicateRefCodeError,
    InsufficientQuantityError,
    SiteNotFoundError,
    SiteNotInGroupError,
    TransactionNotFoundError,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0')


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def generate_batch_code(purchase_date: date) -> str:
    return f"GSB-{purchase_date:%Y%m%d}-{secrets.token_hex(3).upper()}"


def _get_group_site(store, group_id, site_id):
    group = store.get('site_groups', group_id)
    if group is None:
        raise SiteNotFoundError(f"Site group with ID {group_id} not found", group_id=group_id)
    site = store.get('sites', site_id)
    if site is None:
        raise SiteNotFoundError(f"Site with ID {site_id} not found", site_id=site_id)
    if site.group_id != group.id:
        raise SiteNotInGroupError(
            f"Site {site.name} is not part of group {group.name}",
            site_id=site.id,
            group_id=group.id,
        )
    return group, site


def _lock_batch(store, batch_id):
    batch = store.get('batches', batch_id, for_update=True)
    if batch is None:
        raise BatchNotFoundError(f"Batch with ID {batch_id} not found", batch_id=batch_id)
    return batch


def _unit_cost(items) -> Decimal:
    """Weighted unit cost over the lines of one material."""
    quantity = sum((item.quantity for item in items), ZERO)
    if quantity == ZERO:
        return ZERO
    cost = sum((item.quantity * item.unit_cost for item in items), ZERO)
    return (cost / quantity).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)


def record_group_purchase(
    *,
    store,
    group_id: UUID,
    paying_site_id: UUID,
    items: Iterable[Dict[str, Any]],
    purchase_date: date,
    actor: str = '',
    total_amount: Optional[Decimal] = None,
    vendor_name: str = '',
    is_vendor_paid: bool = False,
    ref_code: Optional[str] = None,
    notes: str = ''
):
    """
    Record material bought by ``paying_site_id`` for its site group.

    Creates the batch, one line per material and one purchase transaction
    per line. ``total_amount`` defaults to the sum of the line totals.

    Raises:
        SiteNotFoundError: If the group or site doesn't exist
        SiteNotInGroupError: If the paying site is not in the group
        DuplicateRefCodeError: If another batch already uses ``ref_code``
        InsufficientQuantityError: If there are no lines or a line has no quantity
    """
    items = list(items)
    if not items:
        raise InsufficientQuantityError("A group purchase needs at least one material line")
    for item in items:
        if Decimal(item['quantity']) <= ZERO:
            raise InsufficientQuantityError(
                f"Quantity for material {item['material_id']} must be positive",
                material_id=item['material_id'],
                quantity=item['quantity'],
            )

    with store.atomic():
        group, site = _get_group_site(store, group_id, paying_site_id)

        line_total = sum(
            (money(Decimal(item['quantity']) * Decimal(item['unit_cost'])) for item in items),
            ZERO
        )
        total = money(Decimal(total_amount)) if total_amount is not None else line_total
        quantity = sum((Decimal(item['quantity']) for item in items), ZERO)

        if ref_code and store.query('batches', {'ref_code': ref_code}, limit=1):
            raise DuplicateRefCodeError(
                f"A batch with reference {ref_code} already exists",
                ref_code=ref_code,
            )

        batch = store.insert('batches', {
            'ref_code': ref_code or generate_batch_code(purchase_date),
            'site_group': group,
            'paying_site': site,
            'total_amount': total,
            'original_quantity': quantity,
            'remaining_quantity': quantity,
            'status': BatchStatus.RECORDED,
            'purchase_date': purchase_date,
            'vendor_name': vendor_name,
            'is_vendor_paid': is_vendor_paid,
            'notes': notes,
            'recorded_by': actor,
        })

        for item in items:
            qty = Decimal(item['quantity'])
            unit_cost = Decimal(item['unit_cost'])
            store.insert('batch_items', {
                'batch': batch,
                'material_id': item['material_id'],
                'material_name': item.get('material_name', ''),
                'unit': item.get('unit') or 'nos',
                'quantity': qty,
                'unit_cost': unit_cost,
            })
            store.insert('transactions', {
                'transaction_type': TransactionType.PURCHASE,
                'site_group': group,
                'batch': batch,
                'site': site,
                'material_id': item['material_id'],
                'quantity': qty,
                'unit_cost': unit_cost,
                'total_cost': money(qty * unit_cost),
                'transaction_date': purchase_date,
                'notes': notes,
                'recorded_by': actor,
            })

    logger.info(
        "Recorded group purchase %s for group %s paid by site %s (%s)",
        batch.ref_code, group.id, site.id, total
    )
    return batch


def record_usage(
    *,
    store,
    batch_id: UUID,
    site_id: UUID,
    material_id: str,
    quantity: Decimal,
    usage_date: date,
    actor: str = '',
    notes: str = ''
):
    """
    Record that a site used material from a group batch.

    Creates a usage transaction and its allocation. The allocation amount is
    ``quantity * unit cost`` rounded to cents. Usage by the paying site is
    marked ``is_payer`` and never shows up in balances.

    Raises:
        BatchNotFoundError: If batch doesn't exist
        BatchCompletedError: If batch is already completed
        SiteNotInGroupError: If site is not in the batch's group
        InsufficientQuantityError: If quantity exceeds what is left
    """
    quantity = Decimal(quantity)
    if quantity <= ZERO:
        raise InsufficientQuantityError(
            "Usage quantity must be positive",
            material_id=material_id,
            quantity=quantity,
        )

    with store.atomic():
        batch = _lock_batch(store, batch_id)
        if batch.is_completed:
            raise BatchCompletedError(
                f"Batch {batch.ref_code} is already completed",
                batch_id=batch.id,
                status=batch.status,
            )
        group, site = _get_group_site(store, batch.site_group_id, site_id)

        items = store.query('batch_items', {'batch_id': batch.id})
        allocations = store.query('allocations', {'batch_id': batch.id})
        split = allocate_batch(batch, items, allocations)

        material_items = [item for item in items if item.material_id == material_id]
        available = split.remaining_for(material_id)
        if not material_items or quantity > available:
            raise InsufficientQuantityError(
                f"Only {available} of material {material_id} left in batch {batch.ref_code}",
                batch_id=batch.id,
                material_id=material_id,
                requested=quantity,
                available=available,
            )

        unit_cost = _unit_cost(material_items)
        amount = money(quantity * unit_cost)
        is_payer = site.id == batch.paying_site_id
        if not is_payer and amount > split.payer_remainder:
            raise InsufficientQuantityError(
                f"Usage worth {amount} exceeds the {split.payer_remainder} left on batch {batch.ref_code}",
                batch_id=batch.id,
                material_id=material_id,
                requested=amount,
                available=split.payer_remainder,
            )

        transaction = store.insert('transactions', {
            'transaction_type': TransactionType.USAGE,
            'site_group': group,
            'batch': batch,
            'site': site,
            'material_id': material_id,
            'quantity': quantity,
            'unit_cost': unit_cost,
            'total_cost': amount,
            'transaction_date': usage_date,
            'notes': notes,
            'recorded_by': actor,
        })
        allocation = store.insert('allocations', {
            'batch': batch,
            'site_group': group,
            'site': site,
            'transaction': transaction,
            'material_id': material_id,
            'quantity_used': quantity,
            'unit_cost': unit_cost,
            'amount': amount,
            'usage_date': usage_date,
            'is_payer': is_payer,
        })
        store.update('batches', batch.id, {
            'remaining_quantity': batch.remaining_quantity - quantity,
            'status': BatchStatus.PARTIAL_USED,
        })

    logger.info(
        "Recorded usage of %s x %s from batch %s by site %s (%s)",
        quantity, material_id, batch.ref_code, site.id, amount
    )
    return allocation


def complete_batch(*, store, batch_id: UUID, actor: str = ''):
    """
    Close a batch.

    Whatever nobody recorded usage against is allocated to the paying site as
    self-use, remaining quantity drops to zero and the batch is completed.

    Raises:
        BatchNotFoundError: If batch doesn't exist
        BatchCompletedError: If batch is already completed
    """
    with store.atomic():
        batch = _lock_batch(store, batch_id)
        if batch.is_completed:
            raise BatchCompletedError(
                f"Batch {batch.ref_code} is already completed",
                batch_id=batch.id,
                status=batch.status,
            )

        items = store.query('batch_items', {'batch_id': batch.id})
        allocations = store.query('allocations', {'batch_id': batch.id})
        split = allocate_batch(batch, items, allocations)

        today = timezone.localdate()
        for material_id, remainder in split.materials.items():
            leftover = remainder.unallocated_quantity
            if leftover <= ZERO:
                continue
            unit_cost = _unit_cost([item for item in items if item.material_id == material_id])
            amount = money(leftover * unit_cost)
            transaction = store.insert('transactions', {
                'transaction_type': TransactionType.USAGE,
                'site_group_id': batch.site_group_id,
                'batch': batch,
                'site_id': batch.paying_site_id,
                'material_id': material_id,
                'quantity': leftover,
                'unit_cost': unit_cost,
                'total_cost': amount,
                'transaction_date': today,
                'notes': 'Batch completion self-use',
                'recorded_by': actor,
            })
            store.insert('allocations', {
                'batch': batch,
                'site_group_id': batch.site_group_id,
                'site_id': batch.paying_site_id,
                'transaction': transaction,
                'material_id': material_id,
                'quantity_used': leftover,
                'unit_cost': unit_cost,
                'amount': amount,
                'usage_date': today,
                'is_payer': True,
            })

        store.update('batches', batch.id, {
            'remaining_quantity': ZERO,
            'status': BatchStatus.COMPLETED,
            'completed_at': timezone.now(),
            'completed_by': actor,
        })

    logger.info(
        "Completed batch %s; paying site %s keeps %s",
        batch.ref_code, batch.paying_site_id, split.payer_remainder
    )
    return store.get('batches', batch.id)


def delete_purchase(*, store, transaction_id: UUID, actor: str = '') -> Dict[str, Any]:
    """
    Delete a group purchase and everything hanging off its batch.

    Settlements that claimed usage of the batch lose their payments and
    release all their allocations before they are deleted, so no settlement
    is left pointing at usage that no longer exists.

    Raises:
        TransactionNotFoundError: If no purchase transaction has that ID
    """
    with store.atomic():
        purchase = store.query(
            'transactions',
            {'pk': transaction_id, 'transaction_type': TransactionType.PURCHASE},
            limit=1,
        )
        if not purchase:
            raise TransactionNotFoundError(
                f"Purchase transaction with ID {transaction_id} not found",
                transaction_id=transaction_id,
            )
        batch = _lock_batch(store, purchase[0].batch_id)

        settlement_ids = {
            allocation.settlement_id
            for allocation in store.query(
                'allocations',
                {'batch_id': batch.id, 'settlement__isnull': False},
            )
        }
        released = 0
        for settlement_id in settlement_ids:
            store.delete_where('payments', {'settlement_id': settlement_id})
            released += store.update_where(
                'allocations',
                {'settlement_id': settlement_id},
                {'settlement': None},
            )
            store.delete('settlements', settlement_id)

        store.delete('batches', batch.id)

    logger.warning(
        "Deleted group purchase %s (batch %s) by %s; removed %d settlement(s), released %d allocation(s)",
        transaction_id, batch.ref_code, actor or 'unknown', len(settlement_ids), released
    )
    return {
        'batch_id': batch.id,
        'ref_code': batch.ref_code,
        'settlements_deleted': len(settlement_ids),
        'allocations_released': released,
    }
