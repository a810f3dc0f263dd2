"""
Order Service — イベント定義

ドメインで発生した事実を過去形で命名し、不変として扱う。
"""

from pydantic import BaseModel


class OrderItemData(BaseModel):
    product_id: str
    quantity: int


class OrderPlaced(BaseModel):
    """注文が受け付けられた（全明細の在庫引き当て済み）"""
    order_id: str
    request_id: str | None = None
    delivery_address: dict[str, str]
    items: list[OrderItemData]
    timestamp: str


class OrderPlacementRejected(BaseModel):
    """在庫不足で注文が受け付けられなかった"""
    request_id: str | None = None
    shortages: list[dict]
    timestamp: str


class OrderDeliveryAddressUpdated(BaseModel):
    """配送先が変更された（明細・在庫は変わらない）"""
    order_id: str
    delivery_address: dict[str, str]
    timestamp: str


class OrderDeleted(BaseModel):
    """注文が削除された（在庫は戻さない）"""
    order_id: str
    timestamp: str
