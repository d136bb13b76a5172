"""Notification API views: the signed-in user's bell."""

from __future__ import annotations

from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.notifications.serializers import NotificationSerializer
from modules.notifications.services import NotificationService


class NotificationViewSet(GenericViewSet):
    serializer_class = NotificationSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = NotificationService()

    def list(self, request: Request) -> Response:
        """GET /api/v1/notifications/?unread=true"""
        unread_only = request.query_params.get("unread", "").lower() == "true"
        notifications = self._service.list_for_user(request.user.id, unread_only)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(notifications, request)
        serializer = NotificationSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @action(detail=True, methods=["post"], url_path="read")
    def read(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/notifications/{pk}/read/"""
        try:
            notification = self._service.mark_as_read(request.user.id, pk)
        except (ValueError, ValidationError):
            notification = None
        if notification is None:
            return Response(
                {"detail": "Notification not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(NotificationSerializer(notification).data)
