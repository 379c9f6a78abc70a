import pytest
from decimal import Decimal
from io import StringIO
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.settlements.models import BatchUsageAllocation, InterSiteSettlement, SettlementStatus
from apps.settlements.services import generate_settlement


@pytest.mark.django_db
class TestAuditSettlementsCommand:

    def test_clean_ledger(self, store, brick_usage, balance_key):
        generate_settlement(store=store, **balance_key)
        out = StringIO()

        call_command('audit_settlements', stdout=out)

        assert 'No inconsistencies found.' in out.getvalue()

    def test_cancelled_settlement_still_claiming(self, store, brick_usage, balance_key):
        settlement = generate_settlement(store=store, **balance_key)
        InterSiteSettlement.objects.filter(pk=settlement.pk).update(status=SettlementStatus.CANCELLED)
        out = StringIO()

        with pytest.raises(CommandError):
            call_command('audit_settlements', stdout=out)

        assert f'Settlement {settlement.settlement_code}: cancelled but still claims allocations' in out.getvalue()

    def test_total_mismatch(self, store, brick_usage, balance_key, site_group):
        settlement = generate_settlement(store=store, **balance_key)
        InterSiteSettlement.objects.filter(pk=settlement.pk).update(total_amount=Decimal('2500'))
        out = StringIO()

        with pytest.raises(CommandError):
            call_command('audit_settlements', '--group', str(site_group.id), stdout=out)

        assert settlement.settlement_code in out.getvalue()

    def test_over_allocated_batch(self, brick_batch, brick_usage):
        BatchUsageAllocation.objects.filter(pk=brick_usage.pk).update(amount=Decimal('15000'))
        out = StringIO()

        with pytest.raises(CommandError):
            call_command('audit_settlements', stdout=out)

        assert brick_batch.ref_code in out.getvalue()
