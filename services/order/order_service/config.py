"""
Order Service — 設定

各サービスと同じく環境変数から読み込む。DATABASE_URL だけは必須。
"""

import os

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")

# transaction: 減算と注文記録を 1 トランザクションで行う (既定)
# compensation: 商品ごとに減算し、失敗時は補償で戻す
RESERVATION_STRATEGY = os.environ.get("RESERVATION_STRATEGY", "transaction")

STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "10"))
CREATE_SCHEMA = os.environ.get("CREATE_SCHEMA", "true").lower() in ("1", "true", "yes")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
