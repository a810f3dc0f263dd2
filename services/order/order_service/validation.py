"""
Order Service — リクエスト形式の検証

ストアにアクセスする前に実行する。最初に違反した制約だけを
人が読めるメッセージとして InvalidPlacementRequest で返す。
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import InvalidPlacementRequest
from .models import LineItem

PRODUCT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,63}$")


def validate_address(address: Any) -> dict[str, str]:
    if not address or not isinstance(address, Mapping):
        raise InvalidPlacementRequest("Please provide a valid delivery address")
    for field, value in address.items():
        if not isinstance(value, str) or not value.strip():
            raise InvalidPlacementRequest(
                f"Delivery address field '{field}' must be a non-empty string"
            )
    return {str(k): v.strip() for k, v in address.items()}


def _coerce_item(raw: Any) -> tuple[Any, Any]:
    if isinstance(raw, LineItem):
        return raw.product_id, raw.quantity
    if isinstance(raw, Mapping):
        return raw.get("product_id", raw.get("productId")), raw.get("quantity")
    raise InvalidPlacementRequest("Each product must be an object with productId and quantity")


def validate_line_items(items: Any) -> list[LineItem]:
    """
    明細を検証し、同じ商品の明細は数量を合算して 1 行にまとめる。
    並び順は最初に現れた位置を保つ。
    """
    if not items or isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise InvalidPlacementRequest("Please provide at least one product")

    merged: dict[str, int] = {}
    for position, raw in enumerate(items, start=1):
        product_id, quantity = _coerce_item(raw)
        if not isinstance(product_id, str) or not PRODUCT_ID_PATTERN.match(product_id):
            raise InvalidPlacementRequest(f"Product #{position} has an invalid product id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidPlacementRequest(
                f"Product #{position} ({product_id}) must have a positive integer quantity"
            )
        merged[product_id] = merged.get(product_id, 0) + quantity

    return [LineItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def validate_placement(address: Any, items: Any) -> tuple[dict[str, str], list[LineItem]]:
    return validate_address(address), validate_line_items(items)
