"""
Order Service - HTTP クライアント

BFF や他サービスから Order Service を呼び出すためのクライアント。
レスポンスは Order 集約に戻して返す。
"""

from collections.abc import Iterable

import httpx

from .aggregate import Order
from .errors import NotFoundError, TransportError, ValidationError


class OrderClient:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def post_order(
        self,
        account_id: str,
        lines: Iterable[tuple[str, int]],
    ) -> Order:
        data = await self._request(
            "POST",
            "/orders",
            json={
                "account_id": account_id,
                "products": [
                    {"product_id": product_id, "quantity": quantity}
                    for product_id, quantity in lines
                ],
            },
        )
        return Order.from_dict(data)

    async def get_orders_for_account(self, account_id: str) -> list[Order]:
        data = await self._request("GET", f"/accounts/{account_id}/orders")
        return [Order.from_dict(o) for o in data]

    async def _request(self, method: str, url: str, **kwargs):
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Order service unavailable: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(_detail(resp))
        if resp.status_code == 422:
            raise ValidationError(_detail(resp))
        try:
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            raise TransportError(f"Order service error: {e}") from e


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return resp.text
