from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'settlements'

# Router for ViewSets
# Note: batches must be registered BEFORE empty prefix to avoid URL conflicts
router = DefaultRouter()
router.register(r'batches', views.GroupStockBatchViewSet, basename='batch')
router.register(r'', views.InterSiteSettlementViewSet, basename='settlement')

urlpatterns = [
    # Settlement ViewSet routes
    # GET    /api/settlements/?site=&status=   - List settlements of a site
    # GET    /api/settlements/{id}/            - Get settlement details
    # DELETE /api/settlements/{id}/            - Delete cancelled settlement
    # POST   /api/settlements/{id}/approve/    - Approve pending settlement
    # POST   /api/settlements/{id}/pay/        - Record payment
    # POST   /api/settlements/{id}/cancel/     - Cancel or reverse settlement

    # Batch ViewSet routes
    # GET    /api/settlements/batches/?group=           - List batches
    # POST   /api/settlements/batches/                  - Record group purchase
    # GET    /api/settlements/batches/{id}/             - Get batch details
    # GET    /api/settlements/batches/{id}/allocation/  - Batch split between sites
    # POST   /api/settlements/batches/{id}/usage/       - Record usage
    # POST   /api/settlements/batches/{id}/complete/    - Close batch

    # Group and site endpoints
    path('batches/purchases/<uuid:transaction_id>/', views.delete_purchase, name='delete-purchase'),
    path('groups/<uuid:group_id>/balances/', views.group_balances, name='group-balances'),
    path('groups/<uuid:group_id>/site-summaries/', views.group_site_summaries, name='group-site-summaries'),
    path('groups/<uuid:group_id>/generate/', views.generate_settlement, name='generate'),
    path('groups/<uuid:group_id>/settle/', views.settle_payment, name='settle'),
    path('groups/<uuid:group_id>/net-settle/', views.net_settle, name='net-settle'),
    path('groups/<uuid:group_id>/delete-unsettled/', views.delete_unsettled_usage, name='delete-unsettled'),
    path('sites/<uuid:site_id>/summary/', views.site_settlement_summary, name='site-summary'),

    # Include router URLs
    path('', include(router.urls)),
]
