"""
Order Service - 注文のオーケストレーション

注文はアカウントとカタログという2つの独立したサービスのデータから組み立てる。

作成:
  ┌──────────────────────────────────────────────────────┐
  │  1. Account Service でアカウントの存在を確認          │
  │  2. Catalog Service で注文された商品を解決            │
  │  3. カタログ価格 × 数量で合計金額を計算               │
  │  4. OrderStore に1トランザクションで保存              │
  └──────────────────────────────────────────────────────┘

取得:
  ┌──────────────────────────────────────────────────────┐
  │  1. OrderStore から JOIN 行を取得して集約を組み立てる │
  │  2. 全注文の商品 ID をまとめて Catalog Service に1回  │
  │     だけ問い合わせる                                  │
  │  3. 明細の名前・説明・単価を最新の値で上書きする      │
  └──────────────────────────────────────────────────────┘

分散トランザクションは行わない。途中のどこかで失敗したら処理全体を
失敗させる（fail-fast）。リトライはしない。
"""

import logging
from collections.abc import Iterable

import redis.asyncio as aioredis

from .aggregate import Order, OrderedProduct
from .errors import ValidationError
from .events import publish_order_created
from .gateways import AccountGateway, CatalogGateway, Product
from .store import OrderStore

logger = logging.getLogger(__name__)

MAX_QUANTITY = 2**32 - 1


def requested_quantities(lines: Iterable[tuple[str, int]]) -> dict[str, int]:
    """
    注文リクエストの明細を 商品 ID → 数量 にまとめる。

    同じ商品が複数回指定された場合は最初の指定を使う。数量 0 の商品は除外する。
    """
    quantities: dict[str, int] = {}
    for product_id, quantity in lines:
        if not product_id:
            raise ValidationError("Product id must not be empty")
        # bool は int のサブクラスなので明示的に弾く
        if (
            isinstance(quantity, bool)
            or not isinstance(quantity, int)
            or not 0 <= quantity <= MAX_QUANTITY
        ):
            raise ValidationError(f"Invalid quantity for product {product_id}: {quantity}")
        quantities.setdefault(product_id, quantity)
    return {pid: qty for pid, qty in quantities.items() if qty > 0}


def decorate_orders(orders: list[Order], products: list[Product]) -> None:
    """
    明細の名前・説明・単価を最新のカタログの値で上書きする。

    カタログで見つからない商品の明細はそのまま残す。数量は変更しない。
    """
    catalog = {p.id: p for p in products}
    for order in orders:
        for line in order.products:
            product = catalog.get(line.id)
            if product is None:
                continue
            line.name = product.name
            line.description = product.description
            line.price = product.price


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        accounts: AccountGateway,
        catalog: CatalogGateway,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.store = store
        self.accounts = accounts
        self.catalog = catalog
        self.redis = redis

    async def create_order(
        self,
        account_id: str,
        lines: Iterable[tuple[str, int]],
    ) -> Order:
        """
        注文を作成する。

        商品はリクエストされた ID だけをカタログから取得する。
        カタログで解決できなかった商品は明細から外し、
        明細が1件も残らなければ注文は作らずに ValidationError にする。
        """
        if not account_id:
            raise ValidationError("Account id must not be empty")
        quantities = requested_quantities(lines)

        # 1. アカウントの存在確認（見つからなければ AccountNotFoundError）
        await self.accounts.get_account(account_id)

        if not quantities:
            raise ValidationError("Order must contain at least one product")

        # 2. 注文された商品を解決
        resolved = {
            p.id: p
            for p in await self.catalog.get_products(ids=list(quantities))
        }

        products = [
            OrderedProduct(
                id=product_id,
                quantity=quantity,
                name=resolved[product_id].name,
                description=resolved[product_id].description,
                price=resolved[product_id].price,
            )
            for product_id, quantity in quantities.items()
            if product_id in resolved
        ]
        if not products:
            raise ValidationError("None of the requested products could be resolved")
        dropped = set(quantities) - set(resolved)
        if dropped:
            logger.warning("Dropping unresolved products from order: %s", sorted(dropped))

        # 3. 合計金額を計算して保存
        order = Order.create(account_id, products)
        await self.store.persist(order)

        if self.redis is not None:
            await publish_order_created(self.redis, order)

        return order

    async def get_orders_for_account(self, account_id: str) -> list[Order]:
        """アカウントの注文を作成順に返す。明細は最新のカタログ情報で補完する。"""
        orders = await self.store.get_orders_for_account(account_id)
        if not orders:
            return []

        product_ids = list(dict.fromkeys(
            pid for order in orders for pid in order.product_ids()
        ))
        products = await self.catalog.get_products(ids=product_ids)
        decorate_orders(orders, products)
        return orders
