"""Pre-order API views.

Customer, gateway and admin endpoints over the pre-order services.
Domain exceptions are translated into HTTP responses here:

- not found → 404
- ``PreOrderValidationError`` → 400
- ``ConcurrencyConflict`` → 409
- ``PaymentSessionExpired`` → 410
- ``BusinessRuleViolation`` → 422
"""

from __future__ import annotations

from typing import Optional

import structlog
from django_filters.rest_framework import DjangoFilterBackend
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.permissions import IsAdminUser
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.views import APIView
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.fruits.exceptions import FruitTypeNotFound
from modules.preorders.dtos import (
    CreateDepositIntentDTO,
    CreateHarvestBatchDTO,
    RecordReceiveDTO,
)
from modules.preorders.exceptions import (
    BusinessRuleViolation,
    ConcurrencyConflict,
    HarvestBatchNotFound,
    PaymentIntentNotFound,
    PaymentSessionExpired,
    PreOrderNotFound,
    PreOrderValidationError,
)
from modules.preorders.factories import (
    build_allocation_service,
    build_pre_order_service,
    build_stock_service,
)
from modules.preorders.filters import PreOrderFilter
from modules.preorders.models import PreOrder
from modules.preorders.permissions import HasGatewayToken
from modules.preorders.serializers import (
    AdminActionSerializer,
    AllocationLedgerSerializer,
    AllocationResultSerializer,
    CreateDepositIntentSerializer,
    CreateHarvestBatchSerializer,
    DemandRowSerializer,
    HarvestBatchSerializer,
    PaymentCallbackSerializer,
    PaymentRedirectSerializer,
    PreOrderListSerializer,
    PreOrderSerializer,
    ReceiveSerializer,
    RecordReceiveSerializer,
    RunAllocationSerializer,
    StockRowSerializer,
)

logger = structlog.get_logger(__name__)

NOT_FOUND_ERRORS = (
    PreOrderNotFound,
    PaymentIntentNotFound,
    HarvestBatchNotFound,
    FruitTypeNotFound,
)
DOMAIN_ERRORS = NOT_FOUND_ERRORS + (
    PreOrderValidationError,
    ConcurrencyConflict,
    PaymentSessionExpired,
    BusinessRuleViolation,
)


def domain_error_response(exc: Exception) -> Response:
    if isinstance(exc, NOT_FOUND_ERRORS):
        http_status = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PreOrderValidationError):
        http_status = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ConcurrencyConflict):
        http_status = status.HTTP_409_CONFLICT
    elif isinstance(exc, PaymentSessionExpired):
        http_status = status.HTTP_410_GONE
    else:
        http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    return Response({"detail": str(exc), "code": type(exc).__name__}, status=http_status)


def _validation_error_response(exc: PydanticValidationError) -> Response:
    messages = [error["msg"] for error in exc.errors()]
    return Response({"detail": " ".join(messages)}, status=status.HTTP_400_BAD_REQUEST)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR")


def _actor(request: Request) -> str:
    return request.user.get_username() if request.user else ""


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------


class PreOrderViewSet(GenericViewSet):
    """The signed-in customer's pre-orders.

    Does not extend ``ModelViewSet``: commitments are only created by a
    confirmed deposit.
    """

    queryset = PreOrder.objects.none()
    serializer_class = PreOrderSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_pre_order_service()

    def get_throttles(self) -> list[BaseThrottle]:
        self.throttle_scope = "deposit_intent" if self.action == "deposit_intents" else None
        return super().get_throttles()

    def list(self, request: Request) -> Response:
        """GET /api/v1/preorders/"""
        queryset = self._service.list_my_pre_orders(request.user.id)
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = PreOrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/preorders/{pk}/"""
        try:
            pre_order = self._service.get_my_pre_order(pk, request.user.id)
        except PreOrderNotFound as exc:
            return domain_error_response(exc)
        return Response(PreOrderSerializer(pre_order).data)

    @action(detail=False, methods=["post"], url_path="deposit-intents")
    def deposit_intents(self, request: Request) -> Response:
        """POST /api/v1/preorders/deposit-intents/

        Opens a deposit payment; the commitment is created when the
        gateway confirms it.
        """
        serializer = CreateDepositIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            dto = CreateDepositIntentDTO(
                user_id=request.user.id,
                client_ip=client_ip(request),
                **serializer.validated_data,
            )
        except PydanticValidationError as exc:
            return _validation_error_response(exc)

        try:
            redirect = self._service.create_deposit_intent(dto)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(
            PaymentRedirectSerializer(redirect.model_dump()).data,
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="remaining-payment")
    def remaining_payment(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/preorders/{pk}/remaining-payment/"""
        try:
            redirect = self._service.create_remaining_payment_intent(
                pk, request.user.id, client_ip=client_ip(request)
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(
            PaymentRedirectSerializer(redirect.model_dump()).data,
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/preorders/{pk}/cancel/ (always refused)"""
        try:
            self._service.cancel_pre_order(pk, request.user.id)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        # cancel_pre_order always raises for an existing pre-order
        return Response(status=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------


class PaymentCallbackView(APIView):
    """POST /api/v1/payments/callback/

    Server-to-server settlement notice from the payment gateway.
    """

    authentication_classes: list = []
    permission_classes = [HasGatewayToken]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_pre_order_service()

    def post(self, request: Request) -> Response:
        serializer = PaymentCallbackSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        log = logger.bind(intent_id=str(data["intent_id"]), kind=data["kind"])

        if not data["success"]:
            log.info("preorder.payment_failed_callback")
            return Response({"status": "ignored"})

        try:
            if data["kind"] == PaymentCallbackSerializer.KIND_DEPOSIT:
                pre_order = self._service.confirm_deposit_intent(data["intent_id"])
            else:
                pre_order = self._service.confirm_remaining_payment_intent(
                    data["intent_id"]
                )
        except DOMAIN_ERRORS as exc:
            log.warning("preorder.payment_callback_rejected", error=type(exc).__name__)
            return domain_error_response(exc)

        return Response({"status": "confirmed", "pre_order": PreOrderListSerializer(pre_order).data})


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class AdminPreOrderViewSet(GenericViewSet):
    """Staff view over every commitment plus the lifecycle actions."""

    queryset = PreOrder.objects.none()
    serializer_class = PreOrderSerializer
    permission_classes = [IsAdminUser]
    filterset_class = PreOrderFilter
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    ordering_fields = ["created_at", "quantity_kg", "status"]
    ordering = ["-created_at", "-id"]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_pre_order_service()

    def get_queryset(self):
        include_cancelled = (
            self.request.query_params.get("include_cancelled", "").lower() == "true"
        )
        return self._service.list_pre_orders(
            status=self.request.query_params.get("status"),
            include_cancelled=include_cancelled,
        )

    def list(self, request: Request) -> Response:
        """GET /api/v1/admin/preorders/?status=&fruit_type=&include_cancelled="""
        queryset = self.filter_queryset(self.get_queryset())
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = PreOrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/admin/preorders/{pk}/"""
        try:
            pre_order = self._service.get_pre_order(pk)
        except PreOrderNotFound as exc:
            return domain_error_response(exc)
        return Response(PreOrderSerializer(pre_order).data)

    @action(detail=True, methods=["post"])
    def complete(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/admin/preorders/{pk}/complete/"""
        serializer = AdminActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            pre_order = self._service.mark_completed(
                pk, actor=_actor(request), notes=serializer.validated_data["notes"]
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(PreOrderSerializer(self._service.get_pre_order(pre_order.id)).data)

    @action(detail=True, methods=["post"])
    def refund(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/admin/preorders/{pk}/refund/"""
        serializer = AdminActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            pre_order = self._service.mark_refund(
                pk, actor=_actor(request), notes=serializer.validated_data["notes"]
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(PreOrderSerializer(self._service.get_pre_order(pre_order.id)).data)

    @action(detail=False, methods=["get"])
    def demand(self, request: Request) -> Response:
        """GET /api/v1/admin/preorders/demand/"""
        rows = build_allocation_service().get_demand_by_fruit_type()
        serializer = DemandRowSerializer([row.model_dump() for row in rows], many=True)
        return Response(serializer.data)


class AdminAllocationViewSet(GenericViewSet):
    """Allocation ledger and the allocation trigger."""

    permission_classes = [IsAdminUser]
    serializer_class = AllocationLedgerSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_allocation_service()

    def get_throttles(self) -> list[BaseThrottle]:
        self.throttle_scope = "allocation_run" if self.action == "create" else None
        return super().get_throttles()

    def list(self, request: Request) -> Response:
        """GET /api/v1/admin/preorder-allocations/?fruit_type_id="""
        allocations = self._service.list_allocations(
            request.query_params.get("fruit_type_id") or None
        )
        return Response(AllocationLedgerSerializer(allocations, many=True).data)

    def create(self, request: Request) -> Response:
        """POST /api/v1/admin/preorder-allocations/ (runs FIFO allocation)"""
        serializer = RunAllocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = self._service.run_allocation(
                serializer.validated_data["fruit_type_id"], actor=_actor(request)
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(AllocationResultSerializer(result.model_dump()).data)


class AdminStockViewSet(GenericViewSet):
    """Pre-order stock overview and the warehouse receive log."""

    permission_classes = [IsAdminUser]
    serializer_class = StockRowSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_stock_service()

    def list(self, request: Request) -> Response:
        """GET /api/v1/admin/preorder-stock/"""
        rows = self._service.list_stock()
        return Response(StockRowSerializer([row.model_dump() for row in rows], many=True).data)

    @action(detail=False, methods=["get", "post"])
    def receives(self, request: Request) -> Response:
        """GET|POST /api/v1/admin/preorder-stock/receives/"""
        if request.method == "GET":
            queryset = self._service.list_receives(
                fruit_type_id=request.query_params.get("fruit_type_id") or None,
                batch_id=request.query_params.get("batch_id") or None,
            )
            paginator = StandardResultsSetPagination()
            page = paginator.paginate_queryset(queryset, request)
            return paginator.get_paginated_response(ReceiveSerializer(page, many=True).data)

        serializer = RecordReceiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            dto = RecordReceiveDTO(received_by_id=request.user.id, **serializer.validated_data)
        except PydanticValidationError as exc:
            return _validation_error_response(exc)

        try:
            receive = self._service.record_receive(dto)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(ReceiveSerializer(receive).data, status=status.HTTP_201_CREATED)


class AdminHarvestBatchViewSet(GenericViewSet):
    """Planned pre-order harvest batches."""

    permission_classes = [IsAdminUser]
    serializer_class = HarvestBatchSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_stock_service()

    def list(self, request: Request) -> Response:
        """GET /api/v1/admin/preorder-batches/?fruit_type_id=&status=&keyword="""
        queryset = self._service.list_batches(
            fruit_type_id=request.query_params.get("fruit_type_id") or None,
            status=request.query_params.get("status") or None,
            keyword=request.query_params.get("keyword", ""),
        )
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        return paginator.get_paginated_response(HarvestBatchSerializer(page, many=True).data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/admin/preorder-batches/{pk}/"""
        try:
            batch = self._service.get_batch(pk)
        except HarvestBatchNotFound as exc:
            return domain_error_response(exc)
        return Response(HarvestBatchSerializer(batch).data)

    def create(self, request: Request) -> Response:
        """POST /api/v1/admin/preorder-batches/"""
        serializer = CreateHarvestBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            batch = self._service.create_batch(
                CreateHarvestBatchDTO(**serializer.validated_data)
            )
        except PydanticValidationError as exc:
            return _validation_error_response(exc)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)
        return Response(HarvestBatchSerializer(batch).data, status=status.HTTP_201_CREATED)
