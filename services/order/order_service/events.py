"""
Order Service - イベント定義

注文の作成がコミットされたら OrderCreated を Redis Pub/Sub の
order_events チャネルに発行し、他サービスへ通知する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .aggregate import Order

logger = logging.getLogger(__name__)

CHANNEL = "order_events"


class OrderedProductPayload(BaseModel):
    product_id: str
    quantity: int
    price: float


class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: str
    account_id: str
    total_price: float
    created_at: int
    products: list[OrderedProductPayload]

    @classmethod
    def from_order(cls, order: Order) -> "OrderCreated":
        return cls(
            order_id=order.id,
            account_id=order.account_id,
            total_price=float(order.total_price),
            created_at=order.created_at,
            products=[
                OrderedProductPayload(
                    product_id=p.id, quantity=p.quantity, price=float(p.price)
                )
                for p in order.products
            ],
        )


async def publish_order_created(redis: aioredis.Redis, order: Order) -> None:
    """
    OrderCreated を発行する。

    注文はコミット済みなので、発行に失敗しても作成処理は失敗させない。
    Redis Pub/Sub は fire-and-forget で、購読者がいなければイベントは失われる。
    """
    event = OrderCreated.from_order(order)
    try:
        await redis.publish(CHANNEL, json.dumps({
            "event_type": "OrderCreated",
            "data": event.model_dump(),
        }))
    except RedisError:
        logger.exception("Failed to publish OrderCreated for order %s", order.id)
