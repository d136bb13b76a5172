from django.apps import AppConfig


class PreordersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.preorders"
    label = "preorders"

    def ready(self) -> None:
        from modules.preorders import signals  # noqa: F401
        from modules.preorders.events import (
            FruitTypeAllocated,
            PreOrderClosed,
            PreOrderCreated,
            PreOrderDelayed,
            PreOrderReadyForFulfillment,
        )
        from modules.preorders.handlers import (
            pre_order_closed_handler,
            pre_order_created_handler,
            pre_order_delayed_handler,
            pre_order_paid_handler,
            pre_order_ready_handler,
        )
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(PreOrderCreated, pre_order_created_handler)
        event_bus.subscribe(PreOrderDelayed, pre_order_delayed_handler)
        event_bus.subscribe(FruitTypeAllocated, pre_order_ready_handler)
        event_bus.subscribe(PreOrderReadyForFulfillment, pre_order_paid_handler)
        event_bus.subscribe(PreOrderClosed, pre_order_closed_handler)
