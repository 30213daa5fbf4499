"""
Order Service - 例外定義

コアで発生するエラーの種類:
    NotFound     アカウント・商品が存在しない
    Validation   注文明細が解決できない、ページ指定が不正
    Transport    他サービスに到達できない・タイムアウト
    Persistence  トランザクション書き込みの失敗

いずれもコア内ではリトライせず、そのまま呼び出し元へ伝播させる。
status_code は HTTP 境界 (main.py) で使うステータスコード。
"""


class OrderServiceError(Exception):
    status_code = 500


class NotFoundError(OrderServiceError):
    status_code = 404


class AccountNotFoundError(NotFoundError):
    """アカウントが存在しない"""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class ValidationError(OrderServiceError):
    status_code = 422


class TransportError(OrderServiceError):
    """他サービス (account / catalog) への呼び出しが失敗した"""

    status_code = 502


class PersistenceError(OrderServiceError):
    """注文の書き込み・読み出しに失敗した（書き込みはロールバック済み）"""

    status_code = 500
