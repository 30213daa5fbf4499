"""
Order Service - 外部サービスのゲートウェイ

注文サービスはアカウントと商品カタログを所有しない。
それぞれのサービスへの問い合わせを狭いインターフェース (Protocol) として定義し、
本番では httpx で HTTP 呼び出しを行う実装を使う。
テストでは同じインターフェースを満たすフェイクに差し替えられる。

  ┌───────────────┐  GET /accounts/{id}   ┌─────────────────┐
  │ Order Service │ ────────────────────▶ │ Account Service │
  │               │  GET /products?ids=.. ┌─────────────────┐
  │               │ ────────────────────▶ │ Catalog Service │
  └───────────────┘                       └─────────────────┘
"""

import logging
from decimal import Decimal
from typing import Protocol

import httpx

from .errors import AccountNotFoundError, TransportError, ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class Account:
    def __init__(self, id: str, name: str = "") -> None:
        self.id = id
        self.name = name


class Product:
    def __init__(
        self,
        id: str,
        name: str,
        description: str,
        price: Decimal,
    ) -> None:
        self.id = id
        self.name = name
        self.description = description
        self.price = price

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        # JSON の float は str 経由で Decimal にする
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            price=Decimal(str(data.get("price", 0))),
        )


class AccountGateway(Protocol):
    async def get_account(self, account_id: str) -> Account: ...


class CatalogGateway(Protocol):
    async def get_products(
        self,
        ids: list[str] | None = None,
        query: str = "",
        skip: int = 0,
        take: int = 0,
    ) -> list[Product]: ...


def normalize_page(skip: int, take: int) -> tuple[int, int]:
    """
    ページ指定を正規化する。

    負の値は不正。take が未指定 (0) または上限超過なら上限 (100) にする。
    """
    if skip < 0 or take < 0:
        raise ValidationError(f"Invalid pagination: skip={skip}, take={take}")
    if take == 0 or take > MAX_PAGE_SIZE:
        take = MAX_PAGE_SIZE
    return skip, take


# ── HTTP 実装 ────────────────────────────────────


class HttpAccountGateway:
    """Account Service への HTTP クライアント"""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def get_account(self, account_id: str) -> Account:
        try:
            resp = await self.client.get(f"/accounts/{account_id}")
            if resp.status_code == 404:
                raise AccountNotFoundError(account_id)
            resp.raise_for_status()
            data = resp.json()
            return Account(id=data["id"], name=data.get("name", ""))
        except httpx.HTTPError as e:
            logger.warning("Account service request failed: %s", e)
            raise TransportError(f"Account service unavailable: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Invalid response from account service: {e!r}") from e


class HttpCatalogGateway:
    """
    Catalog Service への HTTP クライアント

    ids を渡すとその商品だけを返す（カタログに無い ID は結果に含まれない）。
    ids も query も無い場合はカタログのデフォルト一覧ページを返す。
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def get_products(
        self,
        ids: list[str] | None = None,
        query: str = "",
        skip: int = 0,
        take: int = 0,
    ) -> list[Product]:
        params: list[tuple[str, str | int]]
        if ids:
            params = [("ids", product_id) for product_id in ids]
        else:
            skip, take = normalize_page(skip, take)
            params = [("skip", skip), ("take", take)]
            if query:
                params.append(("query", query))

        try:
            resp = await self.client.get("/products", params=params)
            resp.raise_for_status()
            return [Product.from_dict(p) for p in resp.json()]
        except httpx.HTTPError as e:
            logger.warning("Catalog service request failed: %s", e)
            raise TransportError(f"Catalog service unavailable: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError) as e:
            raise TransportError(f"Invalid response from catalog service: {e!r}") from e
