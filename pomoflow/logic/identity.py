"""
ログイン状態の判定ロジック
ゲストか認証済みユーザーかを1回の非同期チェックで確定させる
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

from ..cloud.api_client import ApiClient
from ..errors import PomoflowError
from ..models import User, PREMIUM_PLANS

logger = logging.getLogger(__name__)


class IdentityState(Enum):
    UNRESOLVED = "unresolved"
    GUEST = "guest"
    AUTHENTICATED = "authenticated"


class IdentityResolver:
    """現在のプリンシパルを管理するクラス"""

    def __init__(self, api: ApiClient):
        self.api = api
        self._state = IdentityState.UNRESOLVED
        self._user: Optional[User] = None
        self._resolved = asyncio.Event()
        self.error: Optional[str] = None

    @property
    def state(self) -> IdentityState:
        return self._state

    @property
    def user(self) -> Optional[User]:
        """認証済みユーザーの要約（ゲストならNone）"""
        return self._user

    @property
    def is_resolved(self) -> bool:
        return self._resolved.is_set()

    @property
    def is_authenticated(self) -> bool:
        return self._state == IdentityState.AUTHENTICATED

    @property
    def is_guest(self) -> bool:
        return self._state == IdentityState.GUEST

    @property
    def is_premium(self) -> bool:
        """trial / plus プランか"""
        return self.is_authenticated and self._user is not None and self._user.plan in PREMIUM_PLANS

    async def wait_resolved(self) -> IdentityState:
        """判定が終わるまで待つ（判定済みなら即座に返る）"""
        if not self._resolved.is_set():
            await self._resolved.wait()
        return self._state

    def _set_state(self, state: IdentityState, user: Optional[User] = None):
        """状態をまとめて差し替える"""
        self._state = state
        self._user = user
        self._resolved.set()

    async def resolve(self) -> IdentityState:
        """サーバーにセッションを確認（失敗は全てゲスト扱い）"""
        self._resolved.clear()
        try:
            data = await self.api.me()
            self._set_state(IdentityState.AUTHENTICATED, User.from_dict(data))
        except PomoflowError as e:
            if e.status_code != 401:
                logger.warning("ユーザー情報の取得に失敗したためゲストとして扱います: %s", e)
            self._set_state(IdentityState.GUEST)
        except Exception:
            logger.exception("ユーザー情報の取得中に予期しないエラー")
            self._set_state(IdentityState.GUEST)
        return self._state

    async def login(self, identifier: str, password: str) -> User:
        """ログインして状態を再判定"""
        self.error = None
        try:
            await self.api.login(identifier, password)
        except PomoflowError as e:
            logger.info("ログイン失敗: %s", e.message)
            self.error = e.message
            self._set_state(IdentityState.GUEST)
            raise
        await self.resolve()
        return self._require_user()

    async def register(self, email: str, username: str, password: str) -> User:
        """新規登録して状態を再判定"""
        self.error = None
        try:
            await self.api.register(email, username, password)
        except PomoflowError as e:
            logger.info("登録失敗: %s", e.message)
            self.error = e.message
            self._set_state(IdentityState.GUEST)
            raise
        await self.resolve()
        return self._require_user()

    async def logout(self) -> IdentityState:
        """ログアウトして状態を再判定"""
        self.error = None
        try:
            await self.api.logout()
        except PomoflowError as e:
            logger.warning("ログアウト失敗: %s", e.message)
            self.error = e.message
        return await self.resolve()

    def update_cycles(self, cycles: int, last_pomodoro_date: Optional[str] = None):
        """サイクル数の更新をユーザー要約に反映"""
        if self._user is not None:
            self._user.cycles = cycles
            if last_pomodoro_date is not None:
                self._user.last_pomodoro_date = last_pomodoro_date

    def _require_user(self) -> User:
        if self._user is None:
            # ログイン直後のセッション確認に失敗した
            raise PomoflowError(self.error or "Session could not be verified")
        return self._user
