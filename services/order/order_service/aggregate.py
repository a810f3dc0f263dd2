"""
Order Service — 注文集約 (Order Aggregate)

イベントをリプレイして現在の状態を復元する。

状態遷移:
    (なし) → PLACED   (OrderPlaced)
    PLACED → PLACED   (OrderDeliveryAddressUpdated, 明細は不変)
    PLACED → DELETED  (OrderDeleted)
"""


class OrderAggregate:
    def __init__(self) -> None:
        self.id: str | None = None
        self.request_id: str | None = None
        self.delivery_address: dict[str, str] = {}
        self.items: list[dict] = []
        self.created_at: str | None = None
        self.status: str = "UNKNOWN"
        self.version: int = 0

    @property
    def exists(self) -> bool:
        return self.status == "PLACED"

    def apply_order_placed(self, data: dict) -> None:
        self.id = data["order_id"]
        self.request_id = data.get("request_id")
        self.delivery_address = dict(data["delivery_address"])
        self.items = [dict(i) for i in data["items"]]
        self.created_at = data["timestamp"]
        self.status = "PLACED"

    def apply_delivery_address_updated(self, data: dict) -> None:
        self.delivery_address = dict(data["delivery_address"])

    def apply_order_deleted(self, _data: dict) -> None:
        self.status = "DELETED"

    def apply_event(self, event_type: str, event_data: dict) -> None:
        handler = {
            "OrderPlaced": self.apply_order_placed,
            "OrderDeliveryAddressUpdated": self.apply_delivery_address_updated,
            "OrderDeleted": self.apply_order_deleted,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg
