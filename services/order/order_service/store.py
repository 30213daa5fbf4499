"""
Order Service - 注文ストア

注文集約をヘッダ (orders) と明細 (order_products) の2テーブルに保存する。

書き込み:
    ヘッダ1行 + 明細N行を1トランザクションで INSERT する。
    どれか1行でも失敗したらヘッダごとロールバックし、何も見えない状態に戻す。
    明細の商品名・説明・単価は保存しない（読み出し時にカタログから補完する）。
    合計金額だけはヘッダに保存し、以後再計算しない。

読み出し:
    ヘッダと明細を JOIN し、order_id 昇順のフラットな行として取得する。
    aggregate.group_rows で注文集約に組み立てる。
"""

import asyncio
import logging

from sqlalchemy import BigInteger, Numeric, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .aggregate import Order, group_rows
from .errors import PersistenceError

logger = logging.getLogger(__name__)

PRICE = Numeric(38, 6)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS orders (
        id CHAR(32) PRIMARY KEY,
        created_at BIGINT NOT NULL,
        account_id VARCHAR(64) NOT NULL,
        total_price NUMERIC(38, 6) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_products (
        order_id CHAR(32) NOT NULL REFERENCES orders (id) ON DELETE CASCADE,
        line_no INTEGER NOT NULL,
        product_id VARCHAR(64) NOT NULL,
        quantity BIGINT NOT NULL CHECK (quantity > 0),
        PRIMARY KEY (order_id, product_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS orders_account_id_idx ON orders (account_id)",
]

INSERT_ORDER = text("""
    INSERT INTO orders (id, created_at, account_id, total_price)
    VALUES (:id, :created_at, :account_id, :total_price)
""").bindparams(
    bindparam("created_at", type_=BigInteger()),
    bindparam("total_price", type_=PRICE),
)

INSERT_ORDER_PRODUCT = text("""
    INSERT INTO order_products (order_id, line_no, product_id, quantity)
    VALUES (:order_id, :line_no, :product_id, :quantity)
""")

SELECT_ORDERS_FOR_ACCOUNT = text("""
    SELECT
        o.id AS order_id,
        o.created_at,
        o.account_id,
        o.total_price,
        op.product_id,
        op.quantity
    FROM orders o
    JOIN order_products op ON o.id = op.order_id
    WHERE o.account_id = :account_id
    ORDER BY o.id, op.line_no
""").columns(
    created_at=BigInteger(),
    total_price=PRICE,
    quantity=BigInteger(),
)


async def create_schema(engine: AsyncEngine) -> None:
    """テーブルが無ければ作成する（起動時に1回だけ呼ぶ）。"""
    async with engine.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))


async def wait_for_database(
    engine: AsyncEngine,
    attempts: int = 0,
    delay: float = 2.0,
    max_delay: float = 30.0,
) -> None:
    """
    DB に接続できるまで待つ（プロセス起動時のみ）。

    attempts=0 なら接続できるまで無限にリトライする。
    待ち時間は max_delay まで指数的に伸ばす。
    """
    attempt = 0
    backoff = delay
    while True:
        attempt += 1
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
            return
        except (OSError, SQLAlchemyError) as e:
            if attempts and attempt >= attempts:
                logger.error("Database unavailable after %d attempts", attempt)
                raise
            logger.warning(
                "Database not ready (attempt %d), retrying in %.1fs: %s",
                attempt, backoff, e,
            )
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, max_delay)


class OrderStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    async def persist(self, order: Order) -> None:
        """注文集約を1トランザクションで保存する。"""
        async with self.session_factory() as session:
            try:
                await self._insert(session, order)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Rolled back order %s: %s", order.id, e)
                raise PersistenceError(f"Failed to persist order {order.id}") from e
        logger.info(
            "Persisted order %s (%d lines) for account %s",
            order.id, len(order.products), order.account_id,
        )

    async def _insert(self, session: AsyncSession, order: Order) -> None:
        await session.execute(
            INSERT_ORDER,
            {
                "id": order.id,
                "created_at": order.created_at,
                "account_id": order.account_id,
                "total_price": order.total_price,
            },
        )
        for line_no, product in enumerate(order.products):
            await session.execute(
                INSERT_ORDER_PRODUCT,
                {
                    "order_id": order.id,
                    "line_no": line_no,
                    "product_id": product.id,
                    "quantity": product.quantity,
                },
            )

    async def fetch_raw_for_account(self, account_id: str) -> list[dict]:
        """
        アカウントの注文をヘッダ×明細の JOIN 行として返す。

        1行 = (注文, 明細) の組。order_id 昇順、同じ注文内は明細の登録順。
        """
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    SELECT_ORDERS_FOR_ACCOUNT, {"account_id": account_id}
                )
                rows = result.fetchall()
            except SQLAlchemyError as e:
                logger.error("Failed to fetch orders for account %s: %s", account_id, e)
                raise PersistenceError(
                    f"Failed to fetch orders for account {account_id}"
                ) from e
        return [
            {
                "order_id": row.order_id,
                "created_at": row.created_at,
                "account_id": row.account_id,
                "total_price": row.total_price,
                "product_id": row.product_id,
                "quantity": row.quantity,
            }
            for row in rows
        ]

    async def get_orders_for_account(self, account_id: str) -> list[Order]:
        orders = group_rows(await self.fetch_raw_for_account(account_id))
        logger.info("Fetched %d orders for account %s", len(orders), account_id)
        return orders
