"""
Order Service — 例外定義

在庫不足は例外ではなく結果 (Rejected) として扱う。
ここにあるのはコンポーネント境界で捕捉・変換される例外のみ。
"""


class InvalidPlacementRequest(ValueError):
    """注文リクエストの形式が不正（ストアへのアクセス前に検出）"""


class StoreUnavailableError(Exception):
    """在庫ストアに到達できない、またはトランザクションが中断された"""


class DuplicatePlacementError(Exception):
    """同じ request_id の注文が既に記録されている"""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Order already placed for request {request_id}")
        self.request_id = request_id


class InventoryIntegrityError(Exception):
    """
    補償（在庫の戻し）が完了できなかった。

    在庫が減ったまま注文が存在しない状態で、運用者の対応が必要。
    """

    def __init__(self, unreleased: list[tuple[str, int]]) -> None:
        detail = ", ".join(f"{pid}:{qty}" for pid, qty in unreleased)
        super().__init__(f"Compensation incomplete, unreleased stock: {detail}")
        self.unreleased = unreleased
