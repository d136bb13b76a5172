"""Fruit catalog API views (customer side, read-only)."""

from __future__ import annotations

from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.fruits.repositories.django_repository import FruitTypeDjangoRepository
from modules.fruits.serializers import OpenFruitTypeSerializer
from modules.fruits.services import FruitTypeService


class OpenFruitTypeListView(APIView):
    """GET /api/v1/fruit-types/open/?keyword=

    Lists fruit types currently accepting pre-orders.
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = FruitTypeService(FruitTypeDjangoRepository())

    def get(self, request: Request) -> Response:
        keyword = request.query_params.get("keyword", "")
        fruit_types = self._service.list_open_fruit_types(keyword=keyword)
        serializer = OpenFruitTypeSerializer(fruit_types, many=True)
        return Response(serializer.data)
