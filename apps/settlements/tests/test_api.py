"""
Tests for the settlements API endpoints.
"""

import pytest
from decimal import Decimal
from django.urls import reverse
from rest_framework import status

from apps.settlements.models import (
    BatchUsageAllocation,
    GroupStockTransaction,
    InterSiteSettlement,
    SettlementStatus,
    TransactionType,
)
from apps.settlements.services import generate_settlement


@pytest.fixture
def pending_settlement(store, brick_usage, balance_key):
    return generate_settlement(store=store, actor='tester', **balance_key)


def balance_payload(site_a, site_b, **extra):
    return {
        'creditor_site': str(site_a.id),
        'debtor_site': str(site_b.id),
        'week': 2,
        'year': 2024,
        **extra,
    }


# =============================================================================
# Authentication
# =============================================================================

@pytest.mark.django_db
class TestAuthentication:

    def test_balances_require_authentication(self, api_client, site_group):
        url = reverse('settlements:group-balances', args=[site_group.id])

        response = api_client.get(url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_viewer_can_read(self, viewer_client, site_group, brick_usage):
        url = reverse('settlements:group-balances', args=[site_group.id])

        response = viewer_client.get(url)

        assert response.status_code == status.HTTP_200_OK

    def test_viewer_cannot_generate(self, viewer_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:generate', args=[site_group.id])

        response = viewer_client.post(url, balance_payload(site_a, site_b), format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not InterSiteSettlement.objects.exists()

    def test_user_with_permission_can_generate(self, viewer_client, viewer_user, site_group,
                                               site_a, site_b, brick_usage):
        from django.contrib.auth.models import Permission

        viewer_user.user_permissions.add(
            Permission.objects.get(codename='change_intersitesettlement')
        )
        url = reverse('settlements:generate', args=[site_group.id])

        response = viewer_client.post(url, balance_payload(site_a, site_b), format='json')

        assert response.status_code == status.HTTP_201_CREATED


# =============================================================================
# Balances
# =============================================================================

@pytest.mark.django_db
class TestGroupBalancesEndpoint:
    """Tests for GET /api/settlements/groups/{id}/balances/"""

    def test_lists_unsettled_balance(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:group-balances', args=[site_group.id])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 1
        balance = response.data[0]
        assert balance['creditor_site_name'] == 'Site A'
        assert balance['debtor_site_name'] == 'Site B'
        assert Decimal(balance['total_amount_owed']) == Decimal('3000')
        assert balance['week_number'] == 2
        assert balance['transaction_count'] == 1

    def test_unknown_group(self, manager_client):
        url = reverse('settlements:group-balances', args=['00000000-0000-0000-0000-000000000000'])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_site_summaries(self, manager_client, site_group, brick_usage):
        url = reverse('settlements:group-site-summaries', args=[site_group.id])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        by_name = {row['site_name']: row for row in response.data}
        assert Decimal(by_name['Site A']['total_used']) == Decimal('7000')
        assert Decimal(by_name['Site B']['total_used']) == Decimal('3000')


# =============================================================================
# Settlement Lifecycle
# =============================================================================

@pytest.mark.django_db
class TestGenerateEndpoint:
    """Tests for POST /api/settlements/groups/{id}/generate/"""

    def test_generate_settlement(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:generate', args=[site_group.id])

        response = manager_client.post(url, balance_payload(site_a, site_b), format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == SettlementStatus.PENDING
        assert Decimal(response.data['total_amount']) == Decimal('3000')
        assert response.data['created_by'] == 'manager'
        assert response.data['allocation_count'] == 1

    def test_second_generate_is_not_found(self, manager_client, site_group, site_a, site_b, pending_settlement):
        url = reverse('settlements:generate', args=[site_group.id])

        response = manager_client.post(url, balance_payload(site_a, site_b), format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'no_balance_found'

    def test_same_site_rejected(self, manager_client, site_group, site_a):
        url = reverse('settlements:generate', args=[site_group.id])

        response = manager_client.post(url, balance_payload(site_a, site_a), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_week_53_in_short_year_rejected(self, manager_client, site_group, site_a, site_b):
        url = reverse('settlements:generate', args=[site_group.id])

        response = manager_client.post(url, balance_payload(site_a, site_b, week=53), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestSettlementViewSet:
    """Tests for /api/settlements/ routes."""

    def test_list_for_site(self, manager_client, site_b, pending_settlement):
        url = reverse('settlements:settlement-list')

        response = manager_client.get(url, {'site': str(site_b.id)})

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1
        assert response.data['results'][0]['settlement_code'] == pending_settlement.settlement_code

    def test_list_requires_site(self, manager_client):
        response = manager_client.get(reverse('settlements:settlement-list'))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_retrieve(self, manager_client, pending_settlement):
        url = reverse('settlements:settlement-detail', args=[pending_settlement.id])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['payments'] == []

    def test_approve(self, manager_client, pending_settlement):
        url = reverse('settlements:settlement-approve', args=[pending_settlement.id])

        response = manager_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == SettlementStatus.APPROVED
        assert response.data['approved_by'] == 'manager'

    def test_pay(self, manager_client, pending_settlement):
        url = reverse('settlements:settlement-pay', args=[pending_settlement.id])

        response = manager_client.post(
            url,
            {'amount': '3000.00', 'payment_mode': 'upi', 'payer_source': 'site_cash'},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == SettlementStatus.SETTLED
        assert len(response.data['payments']) == 1

    def test_overpay_rejected(self, manager_client, pending_settlement):
        url = reverse('settlements:settlement-pay', args=[pending_settlement.id])

        response = manager_client.post(url, {'amount': '5000.00'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'invalid_payment'

    def test_cancel_then_delete(self, manager_client, pending_settlement):
        cancel_url = reverse('settlements:settlement-cancel', args=[pending_settlement.id])
        detail_url = reverse('settlements:settlement-detail', args=[pending_settlement.id])

        response = manager_client.post(cancel_url, {'reason': 'duplicate'}, format='json')
        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == SettlementStatus.CANCELLED

        response = manager_client.delete(detail_url)
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not InterSiteSettlement.objects.exists()

    def test_delete_open_settlement_conflicts(self, manager_client, pending_settlement):
        url = reverse('settlements:settlement-detail', args=[pending_settlement.id])

        response = manager_client.delete(url)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'invalid_transition'


@pytest.mark.django_db
class TestSettleEndpoints:

    def test_settle_generates_and_pays(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:settle', args=[site_group.id])

        response = manager_client.post(url, balance_payload(site_a, site_b), format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == SettlementStatus.SETTLED
        assert Decimal(response.data['paid_amount']) == Decimal('3000')

    def test_settle_needs_settlement_or_key(self, manager_client, site_group):
        url = reverse('settlements:settle', args=[site_group.id])

        response = manager_client.post(url, {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_net_settle_one_direction(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:net-settle', args=[site_group.id])

        response = manager_client.post(url, {
            'site_a': str(site_a.id),
            'site_b': str(site_b.id),
            'week': 2,
            'year': 2024,
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'invalid_net_settlement'

    def test_net_settle_week_missing_from_year(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:net-settle', args=[site_group.id])

        response = manager_client.post(url, {
            'site_a': str(site_a.id),
            'site_b': str(site_b.id),
            'week': 53,
            'year': 2023,
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'week' in response.data
        assert not InterSiteSettlement.objects.exists()


@pytest.mark.django_db
class TestDeleteUnsettledEndpoint:
    """Tests for POST /api/settlements/groups/{id}/delete-unsettled/"""

    def test_deletes_usage(self, manager_client, site_group, site_a, site_b, brick_usage):
        url = reverse('settlements:delete-unsettled', args=[site_group.id])

        response = manager_client.post(url, {
            'creditor_site': str(site_a.id),
            'debtor_site': str(site_b.id),
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['deleted_count'] == 1
        assert not BatchUsageAllocation.objects.exists()

    def test_claimed_usage_conflicts(self, manager_client, site_group, site_a, site_b, pending_settlement):
        url = reverse('settlements:delete-unsettled', args=[site_group.id])

        response = manager_client.post(url, {
            'creditor_site': str(site_a.id),
            'debtor_site': str(site_b.id),
        }, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['details']['settlement_codes'] == [pending_settlement.settlement_code]

    def test_completed_batch_usage_rejected(self, manager_client, site_group, site_a, site_b,
                                            brick_batch, brick_usage):
        manager_client.post(reverse('settlements:batch-complete', args=[brick_batch.id]))
        url = reverse('settlements:delete-unsettled', args=[site_group.id])

        response = manager_client.post(url, {
            'creditor_site': str(site_a.id),
            'debtor_site': str(site_b.id),
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'batch_completed'
        assert BatchUsageAllocation.objects.filter(pk=brick_usage.pk).exists()


# =============================================================================
# Stock Ledger
# =============================================================================

@pytest.mark.django_db
class TestBatchEndpoints:

    def test_record_purchase(self, manager_client, site_group, site_a):
        url = reverse('settlements:batch-list')

        response = manager_client.post(url, {
            'site_group': str(site_group.id),
            'paying_site': str(site_a.id),
            'purchase_date': '2024-01-08',
            'vendor_name': 'Ambuja Dealer',
            'items': [
                {'material_id': 'cement', 'material_name': 'OPC 53', 'unit': 'bag',
                 'quantity': '50', 'unit_cost': '380'},
            ],
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert Decimal(response.data['total_amount']) == Decimal('19000')
        assert response.data['paying_site']['name'] == 'Site A'
        assert len(response.data['items']) == 1
        assert Decimal(response.data['items'][0]['line_total']) == Decimal('19000')

    def test_duplicate_ref_code_conflicts(self, manager_client, site_group, site_a, brick_batch):
        url = reverse('settlements:batch-list')

        response = manager_client.post(url, {
            'site_group': str(site_group.id),
            'paying_site': str(site_a.id),
            'purchase_date': '2024-01-09',
            'ref_code': brick_batch.ref_code,
            'items': [{'material_id': 'sand', 'quantity': '10', 'unit_cost': '95'}],
        }, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'duplicate_ref_code'
        assert response.data['details']['ref_code'] == brick_batch.ref_code

    def test_record_usage(self, manager_client, brick_batch, site_c):
        url = reverse('settlements:batch-usage', args=[brick_batch.id])

        response = manager_client.post(url, {
            'site': str(site_c.id),
            'material_id': 'bricks',
            'quantity': '100',
            'usage_date': '2024-01-11',
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert Decimal(response.data['amount']) == Decimal('1000')
        assert response.data['is_payer'] is False
        assert response.data['is_settled'] is False

    def test_usage_beyond_remaining(self, manager_client, brick_batch, site_c):
        url = reverse('settlements:batch-usage', args=[brick_batch.id])

        response = manager_client.post(url, {
            'site': str(site_c.id),
            'material_id': 'bricks',
            'quantity': '1001',
            'usage_date': '2024-01-11',
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'insufficient_quantity'

    def test_allocation(self, manager_client, brick_batch, brick_usage):
        url = reverse('settlements:batch-allocation', args=[brick_batch.id])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert Decimal(response.data['payer_remainder']) == Decimal('7000')
        assert response.data['site_usage'][0]['is_payer'] is True

    def test_complete(self, manager_client, brick_batch, brick_usage):
        url = reverse('settlements:batch-complete', args=[brick_batch.id])

        response = manager_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'completed'
        assert response.data['completed_by'] == 'manager'

    def test_delete_purchase(self, manager_client, brick_batch, pending_settlement):
        purchase = GroupStockTransaction.objects.get(
            batch=brick_batch, transaction_type=TransactionType.PURCHASE
        )
        url = reverse('settlements:delete-purchase', args=[purchase.id])

        response = manager_client.delete(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['settlements_deleted'] == 1
        assert not InterSiteSettlement.objects.exists()


@pytest.mark.django_db
class TestSiteSummaryEndpoint:

    def test_site_summary(self, manager_client, site_b, brick_usage):
        url = reverse('settlements:site-summary', args=[site_b.id])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert Decimal(response.data['total_you_owe']) == Decimal('3000')
        assert Decimal(response.data['net_balance']) == Decimal('-3000')

    def test_unknown_site(self, manager_client):
        url = reverse('settlements:site-summary', args=['00000000-0000-0000-0000-000000000000'])

        response = manager_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestHealthCheck:

    def test_health(self, api_client):
        response = api_client.get('/api/health/')

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {'status': 'ok', 'database': 'up'}
