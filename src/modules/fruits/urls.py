"""Fruit catalog URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.fruits.views import OpenFruitTypeListView

urlpatterns = [
    path("fruit-types/open/", OpenFruitTypeListView.as_view(), name="fruit-type-open"),
]
