import pytest
from decimal import Decimal
from datetime import date
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from apps.sites.models import Site, SiteGroup
from apps.settlements.services import (
    LedgerStore,
    ReconciliationService,
    record_group_purchase,
    record_usage,
)


User = get_user_model()

# Wednesday of ISO week 2, 2024 (Mon 8 Jan - Sun 14 Jan)
USAGE_DATE = date(2024, 1, 10)
USAGE_WEEK = 2
USAGE_YEAR = 2024


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def manager_user(db):
    """Staff user allowed to manage settlements."""
    return User.objects.create_user(
        username='manager',
        password='TestPass123!',
        is_staff=True,
    )


@pytest.fixture
def viewer_user(db):
    """Authenticated user without settlement permissions."""
    return User.objects.create_user(
        username='viewer',
        password='TestPass123!',
    )


@pytest.fixture
def manager_client(api_client, manager_user):
    """Return API client authenticated as manager."""
    refresh = RefreshToken.for_user(manager_user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return api_client


@pytest.fixture
def viewer_client(viewer_user):
    """Return API client authenticated as viewer."""
    client = APIClient()
    refresh = RefreshToken.for_user(viewer_user)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def site_group(db):
    return SiteGroup.objects.create(name='North Cluster')


@pytest.fixture
def site_a(site_group):
    """Site that pays for the shared material."""
    return Site.objects.create(name='Site A', group=site_group)


@pytest.fixture
def site_b(site_group):
    return Site.objects.create(name='Site B', group=site_group)


@pytest.fixture
def site_c(site_group):
    return Site.objects.create(name='Site C', group=site_group)


@pytest.fixture
def outside_site(db):
    """Site that belongs to no group."""
    return Site.objects.create(name='Lone Site')


@pytest.fixture
def store(db):
    return LedgerStore()


@pytest.fixture
def service(store):
    return ReconciliationService(store=store)


@pytest.fixture
def brick_batch(store, site_group, site_a):
    """Site A buys 1000 bricks for 10,000."""
    return record_group_purchase(
        store=store,
        group_id=site_group.id,
        paying_site_id=site_a.id,
        items=[{
            'material_id': 'bricks',
            'material_name': 'Red bricks',
            'quantity': Decimal('1000'),
            'unit_cost': Decimal('10'),
        }],
        purchase_date=date(2024, 1, 8),
        vendor_name='Sri Balaji Bricks',
        is_vendor_paid=True,
        actor='tester',
    )


@pytest.fixture
def brick_usage(store, brick_batch, site_b):
    """Site B uses 300 bricks worth 3,000."""
    return record_usage(
        store=store,
        batch_id=brick_batch.id,
        site_id=site_b.id,
        material_id='bricks',
        quantity=Decimal('300'),
        usage_date=USAGE_DATE,
        actor='tester',
    )


@pytest.fixture
def balance_key(site_group, site_a, site_b):
    """Keyword arguments identifying the (A, B, week 2/2024) balance."""
    return {
        'group_id': site_group.id,
        'creditor_site_id': site_a.id,
        'debtor_site_id': site_b.id,
        'week': USAGE_WEEK,
        'year': USAGE_YEAR,
    }
