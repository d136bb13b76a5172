"""Pre-order URL configuration."""

from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from modules.preorders.views import (
    AdminAllocationViewSet,
    AdminHarvestBatchViewSet,
    AdminPreOrderViewSet,
    AdminStockViewSet,
    PaymentCallbackView,
    PreOrderViewSet,
)

router = DefaultRouter(trailing_slash=True)
router.register("preorders", PreOrderViewSet, basename="preorder")
router.register("admin/preorders", AdminPreOrderViewSet, basename="admin-preorder")
router.register(
    "admin/preorder-allocations", AdminAllocationViewSet, basename="admin-preorder-allocation"
)
router.register("admin/preorder-stock", AdminStockViewSet, basename="admin-preorder-stock")
router.register(
    "admin/preorder-batches", AdminHarvestBatchViewSet, basename="admin-preorder-batch"
)

urlpatterns = [
    path("payments/callback/", PaymentCallbackView.as_view(), name="payment-callback"),
    *router.urls,
]
