"""
Order Service - FastAPI エントリーポイント

注文の作成と、アカウント別の注文一覧を HTTP API として公開する。
アカウントと商品の情報は Account Service / Catalog Service から取得し、
注文は自前の DB にヘッダ + 明細として保存する。

  ┌─────┐     ┌───────────────┐────▶ Account Service
  │ BFF │────▶│ Order Service │────▶ Catalog Service
  └─────┘     └──────┬────────┘────▶ Redis (order_events)
                     │
              ┌──────▼──────┐
              │  Order DB   │
              └─────────────┘
"""

import logging
import os
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, StrictInt
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .errors import OrderServiceError
from .gateways import HttpAccountGateway, HttpCatalogGateway
from .service import MAX_QUANTITY, OrderService
from .store import OrderStore, create_schema, wait_for_database

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ["DATABASE_URL"]
ACCOUNT_SERVICE_URL = os.environ["ACCOUNT_SERVICE_URL"]
CATALOG_SERVICE_URL = os.environ["CATALOG_SERVICE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
GATEWAY_TIMEOUT = float(os.environ.get("GATEWAY_TIMEOUT", "10.0"))
DB_CONNECT_ATTEMPTS = int(os.environ.get("DB_CONNECT_ATTEMPTS", "0"))

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
order_service: OrderService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """起動時に DB の準備を待ち、ゲートウェイと Redis の接続プールを開く。"""
    global order_service
    await wait_for_database(engine, attempts=DB_CONNECT_ATTEMPTS)
    await create_schema(engine)

    account_client = httpx.AsyncClient(base_url=ACCOUNT_SERVICE_URL, timeout=GATEWAY_TIMEOUT)
    catalog_client = httpx.AsyncClient(base_url=CATALOG_SERVICE_URL, timeout=GATEWAY_TIMEOUT)
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    order_service = OrderService(
        OrderStore(async_session),
        HttpAccountGateway(account_client),
        HttpCatalogGateway(catalog_client),
        redis_pool,
    )
    logger.info("Order service started")
    yield
    order_service = None
    await account_client.aclose()
    await catalog_client.aclose()
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Request Models ───────────────────────────────


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: StrictInt = Field(ge=0, le=MAX_QUANTITY)


class CreateOrderRequest(BaseModel):
    account_id: str
    products: list[OrderLineRequest]


# ── Endpoints ────────────────────────────────────


@app.post("/orders")
async def create_order(req: CreateOrderRequest):
    """注文作成"""
    try:
        order = await order_service.create_order(
            req.account_id,
            [(line.product_id, line.quantity) for line in req.products],
        )
    except OrderServiceError as e:
        raise HTTPException(e.status_code, str(e)) from e
    return order.to_dict()


@app.get("/accounts/{account_id}/orders")
async def get_orders_for_account(account_id: str):
    """アカウントの注文一覧（作成順）"""
    try:
        orders = await order_service.get_orders_for_account(account_id)
    except OrderServiceError as e:
        raise HTTPException(e.status_code, str(e)) from e
    return [order.to_dict() for order in orders]


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
