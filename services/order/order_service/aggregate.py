"""
Order Service - 注文集約 (Order Aggregate)

注文は「ヘッダ + 明細」の非正規化された集約として扱う。
DB には orders (ヘッダ) と order_products (明細) の2テーブルに分けて保存し、
読み出し時に JOIN したフラットな行から集約を再構築する。

    orders          1 ──── N   order_products
    (id, created_at,           (order_id, line_no,
     account_id, total_price)   product_id, quantity)

明細の name / description / price は表示用のスナップショット。
作成時はカタログの値、読み出し時は最新のカタログの値で上書きされる。
total_price だけは作成時に確定し、以後再計算しない。
"""

import threading
import time
from decimal import Decimal, localcontext
from uuid import uuid4

from .errors import ValidationError

# DB の NUMERIC(38, 6) に合わせる: 小数6桁、整数部32桁まで
MONEY_SCALE = Decimal("0.000001")
MAX_MONEY = Decimal(10) ** 32


class OrderedProduct:
    """注文明細（商品 ID + 数量 + 表示用スナップショット）"""

    def __init__(
        self,
        id: str,
        quantity: int,
        name: str = "",
        description: str = "",
        price: Decimal = Decimal("0"),
    ) -> None:
        self.id = id
        self.quantity = quantity
        self.name = name
        self.description = description
        self.price = price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": float(self.price),
            "quantity": self.quantity,
        }

    def __repr__(self) -> str:
        return f"OrderedProduct(id={self.id!r}, quantity={self.quantity})"


class Order:
    """
    注文集約

    created_at は UNIX エポックからのナノ秒 (int)。
    id と同じ時刻から生成されるので、id の順序と created_at の順序は一致する。
    """

    def __init__(
        self,
        id: str,
        created_at: int,
        account_id: str,
        total_price: Decimal,
        products: list[OrderedProduct] | None = None,
    ) -> None:
        self.id = id
        self.created_at = created_at
        self.account_id = account_id
        self.total_price = total_price
        self.products: list[OrderedProduct] = products if products is not None else []

    @classmethod
    def create(cls, account_id: str, products: list[OrderedProduct]) -> "Order":
        """
        新しい注文を作る。合計金額はここで一度だけ計算する。

        単価と合計は保存時と同じ小数6桁に丸めるので、作成時に返す集約と
        後から読み出した集約の合計金額は一致する。
        """
        amounts = [p.price for p in products] + [
            sum((p.price * p.quantity for p in products), Decimal("0"))
        ]
        if any(not a.is_finite() or abs(a) >= MAX_MONEY for a in amounts):
            raise ValidationError(f"Order amount out of range: {amounts[-1]}")

        with localcontext() as ctx:
            ctx.prec = 38
            for p in products:
                p.price = p.price.quantize(MONEY_SCALE)
            total_price = sum(
                (p.price * p.quantity for p in products), Decimal("0")
            ).quantize(MONEY_SCALE)

        order_id, created_at = new_order_id()
        return cls(order_id, created_at, account_id, total_price, products)

    def product_ids(self) -> list[str]:
        return [p.id for p in self.products]

    # ── ワイヤ形式 ──────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "accountId": self.account_id,
            "totalPrice": float(self.total_price),
            "products": [p.to_dict() for p in self.products],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Order":
        return cls(
            id=data["id"],
            created_at=int(data["createdAt"]),
            account_id=data["accountId"],
            total_price=Decimal(str(data["totalPrice"])),
            products=[
                OrderedProduct(
                    id=p["id"],
                    quantity=int(p["quantity"]),
                    name=p.get("name", ""),
                    description=p.get("description", ""),
                    price=Decimal(str(p.get("price", 0))),
                )
                for p in data.get("products", [])
            ],
        )

    def __repr__(self) -> str:
        return (
            f"Order(id={self.id!r}, account_id={self.account_id!r}, "
            f"total_price={self.total_price}, products={self.products!r})"
        )


# ── 時刻順に並ぶ ID ─────────────────────────────

_id_lock = threading.Lock()
_last_ns = 0


def new_order_id() -> tuple[str, int]:
    """
    時刻順にソートできる注文 ID と作成時刻 (ns) を返す。

    ID = 作成時刻 ns の16桁 hex + ランダム16桁 hex。
    同一プロセス内では時刻が必ず単調増加するように補正する。
    """
    global _last_ns
    with _id_lock:
        now = max(time.time_ns(), _last_ns + 1)
        _last_ns = now
    return f"{now:016x}{uuid4().hex[:16]}", now


# ── フラットな行 → 集約 ──────────────────────────


def group_rows(rows: list[dict]) -> list[Order]:
    """
    order_id 昇順に並んだ JOIN 結果の行を注文集約にまとめる。

    現在の注文をアキュムレータに溜めておき、order_id が変わったら確定して
    結果に追加する。ループ後の最後の確定は、1行以上処理した場合だけ行う
    （行が0件なら空リストを返す）。
    """
    orders: list[Order] = []
    current: Order | None = None

    for row in rows:
        if current is not None and current.id != row["order_id"]:
            orders.append(current)
            current = None
        if current is None:
            current = Order(
                id=row["order_id"],
                created_at=row["created_at"],
                account_id=row["account_id"],
                total_price=row["total_price"],
            )
        current.products.append(
            OrderedProduct(id=row["product_id"], quantity=row["quantity"])
        )

    if current is not None:
        orders.append(current)
    return orders
