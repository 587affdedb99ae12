"""
Pomoflow APIクライアント（HTTP API版）
httpxでサーバーのREST APIを直接呼び出す
セッションはHTTP-only Cookieで、httpxのCookieJarに保持される
"""
import logging
from typing import Optional, Dict, Any

import httpx

from ..errors import PomoflowError, TransientIOError, error_for_status

logger = logging.getLogger(__name__)


class ApiClient:
    """REST APIとの通信を管理するクラス"""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # 認証Cookieを全リクエストで送るため、クライアントは1つを使い回す
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    def _get_headers(self) -> dict:
        """APIヘッダーを取得"""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(self, method: str, path: str, data: Any = None) -> Any:
        """APIを呼び出してJSONを返す（失敗時は例外）"""
        try:
            response = await self._client.request(
                method,
                path,
                headers=self._get_headers(),
                json=data,
            )
        except httpx.TimeoutException as e:
            logger.warning("API タイムアウト: %s %s", method, path)
            raise TransientIOError(f"Request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.warning("API 接続エラー: %s %s: %s", method, path, e)
            raise TransientIOError(f"Connection error: {e}") from e

        if response.is_error:
            raise self._to_error(response)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientIOError("Server returned an invalid response") from e

    def _to_error(self, response: httpx.Response) -> PomoflowError:
        """エラーレスポンスを例外に変換"""
        message = None
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get("msg") or body.get("error")
        except ValueError:
            message = response.text or None
        return error_for_status(response.status_code, message)

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, data: Any = None) -> Any:
        return await self.request("POST", path, data if data is not None else {})

    async def put(self, path: str, data: Any = None) -> Any:
        return await self.request("PUT", path, data if data is not None else {})

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # === 認証 ===

    async def register(self, email: str, username: str, password: str) -> Dict[str, Any]:
        """新規登録"""
        return await self.post("/auth/register", {
            "email": email,
            "username": username,
            "password": password,
        })

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """メールアドレスまたはユーザー名でログイン"""
        key = "email" if "@" in identifier else "username"
        return await self.post("/auth/login", {key: identifier, "password": password})

    async def logout(self) -> Dict[str, Any]:
        """ログアウト（Cookieはサーバー側で削除される）"""
        result = await self.post("/auth/logout")
        self._client.cookies.clear()
        return result

    async def me(self) -> Dict[str, Any]:
        """現在のユーザー情報"""
        return await self.get("/auth/me")

    async def aclose(self):
        await self._client.aclose()
