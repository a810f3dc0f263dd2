"""
Order Service — 注文受付の結果

結果は閉じた 3 種類のいずれか:
  Accepted  … 全明細の引き当てと注文記録に成功
  Rejected  … 入力不正、または在庫不足（呼び出し側で修正・再試行できる）
  Failed    … インフラ障害（在庫の状態を仮定してはいけない）
"""

from typing import Literal, Union

from pydantic import BaseModel, Field

from .models import Order

INSUFFICIENT_STOCK = "insufficient stock"


class Shortage(BaseModel):
    product_id: str
    requested: int
    available: int | None = None
    reason: str = INSUFFICIENT_STOCK


class Accepted(BaseModel):
    outcome: Literal["accepted"] = "accepted"
    order: Order


class Rejected(BaseModel):
    outcome: Literal["rejected"] = "rejected"
    reason: Literal["invalid_request", "insufficient_stock"]
    message: str
    shortages: list[Shortage] = Field(default_factory=list)

    @classmethod
    def invalid(cls, message: str) -> "Rejected":
        return cls(reason="invalid_request", message=message)

    @classmethod
    def out_of_stock(cls, shortages: list[Shortage]) -> "Rejected":
        return cls(
            reason="insufficient_stock",
            message="One or more products have insufficient quantity",
            shortages=shortages,
        )


class Failed(BaseModel):
    outcome: Literal["failed"] = "failed"
    cause: str
    integrity_violation: bool = False


PlacementResult = Union[Accepted, Rejected, Failed]
