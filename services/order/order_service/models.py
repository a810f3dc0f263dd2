"""
Order Service — ドメインモデル

LineItem はリクエスト内だけに存在する一時的な値。
Order は引き当てが成功した数量をそのまま保持し、作成後は変更しない。
"""

from pydantic import BaseModel, ConfigDict


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    quantity: int


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    delivery_address: dict[str, str]
    items: tuple[LineItem, ...]
    created_at: str
    request_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.id,
            "delivery_address": dict(self.delivery_address),
            "items": [
                {"product_id": i.product_id, "quantity": i.quantity}
                for i in self.items
            ],
            "created_at": self.created_at,
            "request_id": self.request_id,
        }
