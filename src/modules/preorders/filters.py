import django_filters

from modules.preorders.constants import PreOrderStatus
from modules.preorders.models import PreOrder


class PreOrderFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=PreOrderStatus.choices)
    fruit_type = django_filters.UUIDFilter(field_name="fruit_type_id")
    user = django_filters.NumberFilter(field_name="user_id")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")

    class Meta:
        model = PreOrder
        fields = ["status", "fruit_type", "user", "start_date", "end_date"]
