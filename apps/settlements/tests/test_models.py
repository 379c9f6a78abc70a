import pytest
from decimal import Decimal

from apps.settlements.models import BatchLineItem, SettlementStatus
from apps.settlements.services import cancel_settlement, generate_settlement


@pytest.mark.django_db
class TestLedgerModelProperties:

    def test_line_total_rounds_to_cents(self, brick_batch):
        line = BatchLineItem.objects.create(
            batch=brick_batch,
            material_id='sand',
            quantity=Decimal('2.5'),
            unit_cost=Decimal('13.3333'),
        )

        assert line.line_total == Decimal('33.33')

    def test_allocation_is_settled_once_claimed(self, store, brick_usage, balance_key):
        assert not brick_usage.is_settled

        generate_settlement(store=store, **balance_key)
        brick_usage.refresh_from_db()

        assert brick_usage.is_settled

    def test_cancelled_settlement_is_not_live(self, store, brick_usage, balance_key):
        settlement = generate_settlement(store=store, **balance_key)
        assert settlement.is_live

        cancelled = cancel_settlement(store=store, settlement_id=settlement.id)

        assert cancelled.status == SettlementStatus.CANCELLED
        assert not cancelled.is_live
