"""
Reconciliation facade.

Single entry point for the settlement engine. The ledger store and the
authorization check are injected; nothing here holds state between calls,
and every read is recomputed from the ledger.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from apps.settlements.models import PaymentMode, SettlementStatus

from . import settlement_lifecycle, stock_ledger
from .balance_aggregation import list_balances, unsettled_allocations
from .batch_allocation import allocate_batch, get_batch_allocation
from .exceptions import (
    InsufficientPermissionsError,
    SettlementNotFoundError,
    SiteNotFoundError,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


class ReconciliationService:
    """
    Settlement engine operations for the presentation layer.

    Args:
        store: Ledger store to read and write through (defaults to LedgerStore())
        authorizer: ``callable(actor) -> bool`` deciding whether the actor may
            change ledger state; None allows everyone
    """

    def __init__(self, store=None, authorizer: Optional[Callable[[Any], bool]] = None):
        self.store = store if store is not None else LedgerStore()
        self.authorizer = authorizer

    def _authorize(self, actor, operation: str) -> None:
        if self.authorizer is not None and not self.authorizer(actor):
            logger.warning("Refused %s for actor %s", operation, actor)
            raise InsufficientPermissionsError(
                f"Not allowed to {operation.replace('_', ' ')}",
                actor=str(actor),
                operation=operation,
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def list_balances(self, group_id: UUID):
        return list_balances(store=self.store, group_id=group_id)

    def list_settlements(self, site_id: UUID, status: Optional[str] = None) -> List:
        """Settlements where the site is creditor or debtor, newest week first."""
        filters = {'status': status} if status else {}
        rows = {}
        for side in ('from_site_id', 'to_site_id'):
            for settlement in self.store.query(
                'settlements', {side: site_id, **filters}, related=('from_site', 'to_site')
            ):
                rows[settlement.id] = settlement
        return sorted(
            rows.values(),
            key=lambda s: (s.year, s.week_number, s.created_at),
            reverse=True,
        )

    def get_settlement(self, settlement_id: UUID):
        settlement = self.store.get('settlements', settlement_id, related=('from_site', 'to_site'))
        if settlement is None:
            raise SettlementNotFoundError(
                f"Settlement with ID {settlement_id} not found",
                settlement_id=settlement_id,
            )
        return settlement

    def get_batch_allocation(self, batch_id: UUID):
        return get_batch_allocation(store=self.store, batch_id=batch_id)

    def compute_site_summaries(self, group_id: UUID) -> List[Dict[str, Any]]:
        """
        Per-site totals for a site group.

        total_paid: purchase totals of batches the site paid for
        total_used: the site's usage of other sites' batches plus the
            remainder of the batches it paid for
        settlement_paid / settlement_received: paid amounts of settled
            settlements where the site is debtor / creditor
        net_cost: total_paid - settlement_received + settlement_paid
        """
        sites = self.store.query('sites', {'group_id': group_id}, ordering=('name',))
        batches = self.store.query('batches', {'site_group_id': group_id})

        items_by_batch = defaultdict(list)
        for item in self.store.query('batch_items', {'batch__site_group_id': group_id}):
            items_by_batch[item.batch_id].append(item)
        allocations_by_batch = defaultdict(list)
        for allocation in self.store.query('allocations', {'site_group_id': group_id}):
            allocations_by_batch[allocation.batch_id].append(allocation)

        paid = defaultdict(lambda: ZERO)
        used = defaultdict(lambda: ZERO)
        for batch in batches:
            paid[batch.paying_site_id] += batch.total_amount
            split = allocate_batch(batch, items_by_batch[batch.id], allocations_by_batch[batch.id])
            for row in split.site_usage:
                used[row.site_id] += row.amount

        settlement_paid = defaultdict(lambda: ZERO)
        settlement_received = defaultdict(lambda: ZERO)
        for settlement in self.store.query(
            'settlements', {'site_group_id': group_id, 'status': SettlementStatus.SETTLED}
        ):
            settlement_paid[settlement.to_site_id] += settlement.paid_amount
            settlement_received[settlement.from_site_id] += settlement.paid_amount

        return [
            {
                'site_id': site.id,
                'site_name': site.name,
                'total_paid': paid[site.id],
                'total_used': used[site.id],
                'settlement_paid': settlement_paid[site.id],
                'settlement_received': settlement_received[site.id],
                'net_cost': paid[site.id] - settlement_received[site.id] + settlement_paid[site.id],
            }
            for site in sites
        ]

    def get_site_settlement_summary(self, site_id: UUID) -> Dict[str, Any]:
        """What a site is owed and what it owes, from unsettled usage and open settlements."""
        site = self.store.get('sites', site_id)
        if site is None:
            raise SiteNotFoundError(f"Site with ID {site_id} not found", site_id=site_id)

        owed_to_you = ZERO
        you_owe = ZERO
        unsettled_count = 0
        if site.group_id is not None:
            for allocation in unsettled_allocations(store=self.store, group_id=site.group_id):
                creditor_id = allocation.batch.paying_site_id
                if creditor_id == allocation.site_id:
                    continue
                if creditor_id == site.id:
                    owed_to_you += allocation.amount
                    unsettled_count += 1
                elif allocation.site_id == site.id:
                    you_owe += allocation.amount
                    unsettled_count += 1

        open_settlements = self.list_settlements(site.id)
        return {
            'site_id': site.id,
            'site_group_id': site.group_id,
            'total_owed_to_you': owed_to_you,
            'total_you_owe': you_owe,
            'net_balance': owed_to_you - you_owe,
            'unsettled_count': unsettled_count,
            'pending_settlements_count': sum(
                1 for s in open_settlements if s.status == SettlementStatus.PENDING
            ),
            'approved_settlements_count': sum(
                1 for s in open_settlements if s.status == SettlementStatus.APPROVED
            ),
        }

    # =========================================================================
    # Settlement lifecycle
    # =========================================================================

    def generate_settlement(self, *, group_id, creditor_site_id, debtor_site_id, week, year,
                            actor='', require_vendor_paid=None, notes=''):
        self._authorize(actor, 'generate_settlement')
        return settlement_lifecycle.generate_settlement(
            store=self.store,
            group_id=group_id,
            creditor_site_id=creditor_site_id,
            debtor_site_id=debtor_site_id,
            week=week,
            year=year,
            actor=actor,
            require_vendor_paid=require_vendor_paid,
            notes=notes,
        )

    def approve_settlement(self, *, settlement_id, actor=''):
        self._authorize(actor, 'approve_settlement')
        return settlement_lifecycle.approve_settlement(
            store=self.store, settlement_id=settlement_id, actor=actor
        )

    def record_payment(self, *, settlement_id, amount, payment_mode=PaymentMode.CASH,
                       payer_source='', actor='', payment_date=None, reference_number='', notes=''):
        self._authorize(actor, 'record_payment')
        return settlement_lifecycle.record_payment(
            store=self.store,
            settlement_id=settlement_id,
            amount=amount,
            payment_mode=payment_mode,
            payer_source=payer_source,
            actor=actor,
            payment_date=payment_date,
            reference_number=reference_number,
            notes=notes,
        )

    def settle(self, *, amount=None, settlement_id=None, group_id=None, creditor_site_id=None,
               debtor_site_id=None, week=None, year=None, payment_mode=PaymentMode.CASH,
               payer_source='', actor='', payment_date=None, reference_number='', notes=''):
        """
        Settle a payment.

        With ``settlement_id`` the payment goes on that existing settlement.
        Otherwise a settlement is generated for the balance key first; both
        steps commit or roll back together. ``amount`` defaults to the full
        pending amount.
        """
        self._authorize(actor, 'settle')
        with self.store.atomic():
            if settlement_id is None:
                settlement = settlement_lifecycle.generate_settlement(
                    store=self.store,
                    group_id=group_id,
                    creditor_site_id=creditor_site_id,
                    debtor_site_id=debtor_site_id,
                    week=week,
                    year=year,
                    actor=actor,
                )
            else:
                settlement = self.get_settlement(settlement_id)

            return settlement_lifecycle.record_payment(
                store=self.store,
                settlement_id=settlement.id,
                amount=settlement.pending_amount if amount is None else amount,
                payment_mode=payment_mode,
                payer_source=payer_source,
                actor=actor,
                payment_date=payment_date,
                reference_number=reference_number,
                notes=notes,
            )

    def cancel_settlement(self, *, settlement_id, reason='', actor=''):
        """Cancel an open settlement, or reverse a settled one."""
        self._authorize(actor, 'cancel_settlement')
        settlement = self.get_settlement(settlement_id)
        if settlement.status == SettlementStatus.SETTLED:
            return settlement_lifecycle.cancel_settled_settlement(
                store=self.store, settlement_id=settlement_id, reason=reason, actor=actor
            )
        return settlement_lifecycle.cancel_settlement(
            store=self.store, settlement_id=settlement_id, reason=reason, actor=actor
        )

    def delete_settlement(self, *, settlement_id, actor=''):
        self._authorize(actor, 'delete_settlement')
        settlement_lifecycle.delete_settlement(
            store=self.store, settlement_id=settlement_id, actor=actor
        )

    def delete_unsettled_usage(self, *, group_id, creditor_site_id, debtor_site_id, actor=''):
        self._authorize(actor, 'delete_unsettled_usage')
        return settlement_lifecycle.delete_unsettled_usage(
            store=self.store,
            group_id=group_id,
            creditor_site_id=creditor_site_id,
            debtor_site_id=debtor_site_id,
            actor=actor,
        )

    def net_settle(self, *, group_id, site_a_id, site_b_id, week, year, actor='', net_payment=None):
        self._authorize(actor, 'net_settle')
        return settlement_lifecycle.net_settle(
            store=self.store,
            group_id=group_id,
            site_a_id=site_a_id,
            site_b_id=site_b_id,
            week=week,
            year=year,
            actor=actor,
            net_payment=net_payment,
        )

    # =========================================================================
    # Stock ledger
    # =========================================================================

    def record_group_purchase(self, *, actor='', **kwargs):
        self._authorize(actor, 'record_group_purchase')
        return stock_ledger.record_group_purchase(store=self.store, actor=actor, **kwargs)

    def record_usage(self, *, actor='', **kwargs):
        self._authorize(actor, 'record_usage')
        return stock_ledger.record_usage(store=self.store, actor=actor, **kwargs)

    def complete_batch(self, *, batch_id, actor=''):
        self._authorize(actor, 'complete_batch')
        return stock_ledger.complete_batch(store=self.store, batch_id=batch_id, actor=actor)

    def delete_purchase(self, *, transaction_id, actor=''):
        self._authorize(actor, 'delete_purchase')
        return stock_ledger.delete_purchase(
            store=self.store, transaction_id=transaction_id, actor=actor
        )
