"""
Batch allocator.

Works out how a stock batch splits between the sites that used it. Usage by
other sites is recorded as allocations; the paying site's own share is never
stored and is always derived by subtraction, so it cannot drift from the
allocation rows.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List
from uuid import UUID

from .exceptions import BatchNotFoundError, NegativeRemainderError

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass(frozen=True)
class MaterialRemainder:
    material_id: str
    quantity: Decimal
    used_by_others: Decimal
    used_by_payer: Decimal

    @property
    def remaining_quantity(self) -> Decimal:
        """Quantity not used by other sites; the paying site's implicit share."""
        return self.quantity - self.used_by_others

    @property
    def unallocated_quantity(self) -> Decimal:
        """Quantity nobody has recorded usage against yet."""
        return self.quantity - self.used_by_others - self.used_by_payer


@dataclass
class SiteUsage:
    site_id: UUID
    amount: Decimal = ZERO
    quantity: Decimal = ZERO
    is_payer: bool = False


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: UUID
    paying_site_id: UUID
    total_amount: Decimal
    used_by_others: Decimal
    payer_remainder: Decimal
    materials: Dict[str, MaterialRemainder] = field(default_factory=dict)
    site_usage: List[SiteUsage] = field(default_factory=list)

    def remaining_for(self, material_id: str) -> Decimal:
        remainder = self.materials.get(material_id)
        return remainder.unallocated_quantity if remainder else ZERO


def allocate_batch(batch, line_items: Iterable, allocations: Iterable) -> BatchAllocation:
    """
    Compute the split of ``batch`` between its sites.

    ``used_by_others`` sums allocation amounts of every site except the
    paying site. ``payer_remainder = total_amount - used_by_others`` is the
    paying site's own usage. Per material, remaining quantity is the line
    quantity minus what other sites used.

    Raises:
        NegativeRemainderError: If other sites used more money or more of a
            material than the batch holds.
    """
    paying_site_id = batch.paying_site_id

    materials = OrderedDict()
    for item in line_items:
        current = materials.get(item.material_id, (ZERO, ZERO, ZERO))
        materials[item.material_id] = (current[0] + item.quantity, current[1], current[2])

    usage = OrderedDict()
    used_by_others = ZERO
    for allocation in allocations:
        is_other = allocation.site_id != paying_site_id
        qty, others, payer = materials.get(allocation.material_id, (ZERO, ZERO, ZERO))
        if is_other:
            used_by_others += allocation.amount
            others += allocation.quantity_used
        else:
            payer += allocation.quantity_used
        materials[allocation.material_id] = (qty, others, payer)

        if is_other:
            row = usage.setdefault(allocation.site_id, SiteUsage(site_id=allocation.site_id))
            row.amount += allocation.amount
            row.quantity += allocation.quantity_used

    payer_remainder = batch.total_amount - used_by_others
    if payer_remainder < ZERO:
        logger.error(
            "Batch %s over-allocated: total %s, used by others %s",
            batch.id, batch.total_amount, used_by_others
        )
        raise NegativeRemainderError(
            f"Usage allocations exceed batch total by {-payer_remainder}",
            batch_id=batch.id,
            total_amount=batch.total_amount,
            used_by_others=used_by_others,
        )

    remainders = OrderedDict()
    for material_id, (qty, others, payer) in materials.items():
        remainder = MaterialRemainder(
            material_id=material_id,
            quantity=qty,
            used_by_others=others,
            used_by_payer=payer,
        )
        if remainder.remaining_quantity < ZERO or remainder.unallocated_quantity < ZERO:
            logger.error(
                "Batch %s over-allocated for material %s: purchased %s, used %s",
                batch.id, material_id, qty, others + payer
            )
            raise NegativeRemainderError(
                f"Usage of material {material_id} exceeds purchased quantity",
                batch_id=batch.id,
                material_id=material_id,
                quantity=qty,
                used=others + payer,
            )
        remainders[material_id] = remainder

    payer_quantity = sum((r.remaining_quantity for r in remainders.values()), ZERO)
    site_usage = [
        SiteUsage(
            site_id=paying_site_id,
            amount=payer_remainder,
            quantity=payer_quantity,
            is_payer=True,
        )
    ]
    site_usage.extend(usage.values())

    return BatchAllocation(
        batch_id=batch.id,
        paying_site_id=paying_site_id,
        total_amount=batch.total_amount,
        used_by_others=used_by_others,
        payer_remainder=payer_remainder,
        materials=dict(remainders),
        site_usage=site_usage,
    )


def get_batch_allocation(*, store, batch_id: UUID) -> BatchAllocation:
    """Read a batch with its lines and allocations and compute its split."""
    batch = store.get('batches', batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch with ID {batch_id} not found", batch_id=batch_id)

    items = store.query('batch_items', {'batch_id': batch.id})
    allocations = store.query('allocations', {'batch_id': batch.id})
    return allocate_batch(batch, items, allocations)
