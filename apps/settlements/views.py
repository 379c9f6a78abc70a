from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema

from apps.sites.models import Site, SiteGroup
from .models import GroupStockBatch, InterSiteSettlement
from .serializers import (
    SettlementFilterSerializer,
    SitePairSerializer,
    GenerateSettlementSerializer,
    RecordPaymentSerializer,
    SettleInputSerializer,
    NetSettleInputSerializer,
    CancelInputSerializer,
    GroupPurchaseInputSerializer,
    UsageInputSerializer,
    InterSiteSettlementSerializer,
    InterSiteSettlementListSerializer,
    InterSiteBalanceSerializer,
    SiteSummarySerializer,
    SiteSettlementSummarySerializer,
    NetSettlementResultSerializer,
    GroupStockBatchSerializer,
    UsageAllocationSerializer,
    BatchAllocationSerializer,
)
from .permissions import CanManageSettlements, can_manage_settlements

from apps.settlements.services import (
    ReconciliationService,
    # Exceptions
    SettlementsServiceError,
    NoBalanceFoundError,
    SettlementNotFoundError,
    BatchNotFoundError,
    SiteNotFoundError,
    TransactionNotFoundError,
    AllocationClaimedError,
    InvalidTransitionError,
    VendorUnpaidError,
    DuplicateRefCodeError,
    InsufficientPermissionsError,
    StoreUnavailableError,
    NegativeRemainderError,
)


ERROR_STATUS = [
    ((NoBalanceFoundError, SettlementNotFoundError, BatchNotFoundError,
      SiteNotFoundError, TransactionNotFoundError), status.HTTP_404_NOT_FOUND),
    ((AllocationClaimedError, InvalidTransitionError, VendorUnpaidError,
      DuplicateRefCodeError), status.HTTP_409_CONFLICT),
    ((InsufficientPermissionsError,), status.HTTP_403_FORBIDDEN),
    ((StoreUnavailableError,), status.HTTP_503_SERVICE_UNAVAILABLE),
    ((NegativeRemainderError,), status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def service_error_response(exc: SettlementsServiceError) -> Response:
    """Convert a service exception into an error response."""
    http_status = status.HTTP_400_BAD_REQUEST
    for exc_types, code in ERROR_STATUS:
        if isinstance(exc, exc_types):
            http_status = code
            break
    return Response(
        {'error': exc.message, 'code': exc.code, 'details': exc.details},
        status=http_status
    )


def get_service(request) -> ReconciliationService:
    return ReconciliationService(authorizer=lambda actor: can_manage_settlements(request.user))


def get_actor(request) -> str:
    return request.user.get_username()


class SettlementPagination(PageNumberPagination):
    """Custom pagination for settlements."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class InterSiteSettlementViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for inter-site settlements.

    All business logic is handled by the reconciliation service.

    list: Settlements of a site (?site=<id>&status=<status>)
    retrieve: Get a settlement with its payments
    destroy: Delete a cancelled settlement
    """

    queryset = InterSiteSettlement.objects.select_related(
        'from_site', 'to_site'
    ).prefetch_related('payments')
    serializer_class = InterSiteSettlementSerializer
    permission_classes = [IsAuthenticated, CanManageSettlements]
    pagination_class = SettlementPagination

    def get_serializer_class(self):
        if self.action == 'list':
            return InterSiteSettlementListSerializer
        return InterSiteSettlementSerializer

    def list(self, request, *args, **kwargs):
        filter_serializer = SettlementFilterSerializer(data=request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        try:
            settlements = get_service(request).list_settlements(
                params['site'], status=params.get('status')
            )
        except SettlementsServiceError as e:
            return service_error_response(e)

        page = self.paginate_queryset(settlements)
        if page is not None:
            serializer = self.get_serializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        return Response(self.get_serializer(settlements, many=True).data)

    def retrieve(self, request, *args, **kwargs):
        try:
            settlement = get_service(request).get_settlement(self.kwargs['pk'])
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(InterSiteSettlementSerializer(settlement).data)

    def destroy(self, request, *args, **kwargs):
        """Delete a settlement. Only cancelled settlements can be deleted."""
        try:
            get_service(request).delete_settlement(
                settlement_id=self.kwargs['pk'], actor=get_actor(request)
            )
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        """
        Approve a pending settlement.

        POST /api/settlements/{id}/approve/
        """
        try:
            settlement = get_service(request).approve_settlement(
                settlement_id=pk, actor=get_actor(request)
            )
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(InterSiteSettlementSerializer(settlement).data)

    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        """
        Record a payment and mark the settlement settled.

        POST /api/settlements/{id}/pay/
        Body: {"amount": "3000.00", "payment_mode": "upi", "payer_source": "site_cash"}
        """
        input_serializer = RecordPaymentSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        try:
            settlement = get_service(request).record_payment(
                settlement_id=pk,
                amount=data['amount'],
                payment_mode=data['payment_mode'],
                payer_source=data['payer_source'],
                payment_date=data.get('payment_date'),
                reference_number=data['reference_number'],
                notes=data['notes'],
                actor=get_actor(request),
            )
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(InterSiteSettlementSerializer(settlement).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """
        Cancel a settlement. Settled settlements are reversed and lose their payments.

        POST /api/settlements/{id}/cancel/
        Body: {"reason": "optional"}
        """
        input_serializer = CancelInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        try:
            settlement = get_service(request).cancel_settlement(
                settlement_id=pk,
                reason=input_serializer.validated_data['reason'],
                actor=get_actor(request),
            )
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(InterSiteSettlementSerializer(settlement).data)


class GroupStockBatchViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for group stock batches.

    list: Batches (?group=<id>)
    create: Record a group purchase
    retrieve: Get a batch with its lines
    """

    queryset = GroupStockBatch.objects.select_related('paying_site').prefetch_related('items')
    serializer_class = GroupStockBatchSerializer
    permission_classes = [IsAuthenticated, CanManageSettlements]
    pagination_class = SettlementPagination

    def get_queryset(self):
        queryset = super().get_queryset()
        group_id = self.request.query_params.get('group')
        if group_id:
            queryset = queryset.filter(site_group_id=group_id)
        return queryset

    def create(self, request, *args, **kwargs):
        """Record a group purchase."""
        input_serializer = GroupPurchaseInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        try:
            batch = get_service(request).record_group_purchase(
                group_id=data['site_group'],
                paying_site_id=data['paying_site'],
                items=data['items'],
                purchase_date=data['purchase_date'],
                total_amount=data.get('total_amount'),
                vendor_name=data['vendor_name'],
                is_vendor_paid=data['is_vendor_paid'],
                ref_code=data.get('ref_code'),
                notes=data['notes'],
                actor=get_actor(request),
            )
        except SettlementsServiceError as e:
            return service_error_response(e)

        batch = self.get_queryset().get(pk=batch.pk)
        return Response(GroupStockBatchSerializer(batch).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def allocation(self, request, pk=None):
        """
        How the batch splits between its sites.

        GET /api/settlements/batches/{id}/allocation/
        """
        try:
            split = get_service(request).get_batch_allocation(pk)
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(BatchAllocationSerializer(split).data)

    @action(detail=True, methods=['post'])
    def usage(self, request, pk=None):
        """
        Record usage of batch material by a site.

        POST /api/settlements/batches/{id}/usage/
        Body: {"site": "<uuid>", "material_id": "bricks", "quantity": "300", "usage_date": "2024-01-10"}
        """
        input_serializer = UsageInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        try:
            allocation = get_service(request).record_usage(
                batch_id=pk,
                site_id=data['site'],
                material_id=data['material_id'],
                quantity=data['quantity'],
                usage_date=data['usage_date'],
                notes=data['notes'],
                actor=get_actor(request),
            )
        except SettlementsServiceError as e:
            return service_error_response(e)
        return Response(UsageAllocationSerializer(allocation).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        """
        Close the batch; leftover material becomes the paying site's own usage.

        POST /api/settlements/batches/{id}/complete/
        """
        try:
            get_service(request).complete_batch(batch_id=pk, actor=get_actor(request))
        except SettlementsServiceError as e:
            return service_error_response(e)
        batch = self.get_queryset().get(pk=pk)
        return Response(GroupStockBatchSerializer(batch).data)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, CanManageSettlements])
def delete_purchase(request, transaction_id):
    """Delete a group purchase, its batch and any settlements built on it."""
    try:
        result = get_service(request).delete_purchase(
            transaction_id=transaction_id, actor=get_actor(request)
        )
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(result)


# =============================================================================
# Group endpoints
# =============================================================================

@extend_schema(
    responses={200: InterSiteBalanceSerializer(many=True)},
    description="Unsettled inter-site balances of a site group, newest week first.",
    tags=['settlements'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def group_balances(request, group_id):
    """Who owes whom, per week, in a site group."""
    group = get_object_or_404(SiteGroup, pk=group_id)
    try:
        balances = get_service(request).list_balances(group.id)
    except SettlementsServiceError as e:
        return service_error_response(e)

    balances = sorted(
        balances,
        key=lambda b: (b.year, b.week_number, b.total_amount_owed),
        reverse=True,
    )
    site_names = dict(Site.objects.filter(group=group).values_list('id', 'name'))
    serializer = InterSiteBalanceSerializer(balances, many=True, context={'site_names': site_names})
    return Response(serializer.data)


@extend_schema(
    responses={200: SiteSummarySerializer(many=True)},
    description="Per-site paid, used and settlement totals of a site group.",
    tags=['settlements'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def group_site_summaries(request, group_id):
    group = get_object_or_404(SiteGroup, pk=group_id)
    try:
        summaries = get_service(request).compute_site_summaries(group.id)
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(SiteSummarySerializer(summaries, many=True).data)


@extend_schema(
    request=GenerateSettlementSerializer,
    responses={201: InterSiteSettlementSerializer},
    tags=['settlements'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageSettlements])
def generate_settlement(request, group_id):
    """Create a pending settlement from a weekly balance."""
    group = get_object_or_404(SiteGroup, pk=group_id)
    input_serializer = GenerateSettlementSerializer(data=request.data)
    input_serializer.is_valid(raise_exception=True)
    data = input_serializer.validated_data

    try:
        settlement = get_service(request).generate_settlement(
            group_id=group.id,
            creditor_site_id=data['creditor_site'],
            debtor_site_id=data['debtor_site'],
            week=data['week'],
            year=data['year'],
            require_vendor_paid=data['require_vendor_paid'],
            notes=data['notes'],
            actor=get_actor(request),
        )
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(InterSiteSettlementSerializer(settlement).data, status=status.HTTP_201_CREATED)


@extend_schema(
    request=SettleInputSerializer,
    responses={200: InterSiteSettlementSerializer},
    tags=['settlements'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageSettlements])
def settle_payment(request, group_id):
    """Pay an existing settlement, or generate one for a balance and pay it."""
    group = get_object_or_404(SiteGroup, pk=group_id)
    input_serializer = SettleInputSerializer(data=request.data)
    input_serializer.is_valid(raise_exception=True)
    data = input_serializer.validated_data

    try:
        settlement = get_service(request).settle(
            settlement_id=data.get('settlement'),
            group_id=group.id,
            creditor_site_id=data.get('creditor_site'),
            debtor_site_id=data.get('debtor_site'),
            week=data.get('week'),
            year=data.get('year'),
            amount=data.get('amount'),
            payment_mode=data['payment_mode'],
            payer_source=data['payer_source'],
            payment_date=data.get('payment_date'),
            reference_number=data['reference_number'],
            notes=data['notes'],
            actor=get_actor(request),
        )
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(InterSiteSettlementSerializer(settlement).data)


@extend_schema(
    request=NetSettleInputSerializer,
    responses={200: NetSettlementResultSerializer},
    tags=['settlements'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageSettlements])
def net_settle(request, group_id):
    """Offset two reciprocal weekly balances against each other."""
    group = get_object_or_404(SiteGroup, pk=group_id)
    input_serializer = NetSettleInputSerializer(data=request.data)
    input_serializer.is_valid(raise_exception=True)
    data = input_serializer.validated_data

    net_payment = None
    if data['pay_net']:
        net_payment = {
            'payment_mode': data['payment_mode'],
            'payer_source': data['payer_source'],
            'payment_date': data.get('payment_date'),
            'reference_number': data['reference_number'],
            'notes': data['notes'],
        }

    try:
        result = get_service(request).net_settle(
            group_id=group.id,
            site_a_id=data['site_a'],
            site_b_id=data['site_b'],
            week=data['week'],
            year=data['year'],
            net_payment=net_payment,
            actor=get_actor(request),
        )
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(NetSettlementResultSerializer(result).data)


@extend_schema(request=SitePairSerializer, tags=['settlements'])
@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageSettlements])
def delete_unsettled_usage(request, group_id):
    """Delete a site pair's unsettled usage and restore batch quantities."""
    group = get_object_or_404(SiteGroup, pk=group_id)
    input_serializer = SitePairSerializer(data=request.data)
    input_serializer.is_valid(raise_exception=True)
    data = input_serializer.validated_data

    try:
        result = get_service(request).delete_unsettled_usage(
            group_id=group.id,
            creditor_site_id=data['creditor_site'],
            debtor_site_id=data['debtor_site'],
            actor=get_actor(request),
        )
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(result)


@extend_schema(
    responses={200: SiteSettlementSummarySerializer},
    tags=['settlements'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def site_settlement_summary(request, site_id):
    """Amounts owed to and by a site."""
    try:
        summary = get_service(request).get_site_settlement_summary(site_id)
    except SettlementsServiceError as e:
        return service_error_response(e)
    return Response(SiteSettlementSummarySerializer(summary).data)
