"""
今日のサイクル数（完了ポモドーロ数）の管理ロジック
日付が変わったら1から数え直す（経過時間ではなく暦日で判定）
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from ..cloud.api_client import ApiClient
from ..errors import PomoflowError, TransientIOError
from ..local_cache import LocalCache, GUEST_CYCLES_KEY
from ..models import GuestCycleState, parse_datetime, is_same_day
from .identity import IdentityResolver, IdentityState

logger = logging.getLogger(__name__)


class RemoteCycleCounter:
    """認証済みユーザー用：日付判定はサーバー側で行う"""

    def __init__(self, api: ApiClient):
        self.api = api

    async def record_cycle(self) -> int:
        data = await self.api.put("/users/cycles/increment")
        try:
            return int(data["cycles"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientIOError("Server did not return the cycle count") from e


class LocalCycleCounter:
    """ゲスト用：ローカルキャッシュで同じ日付判定を行う"""

    def __init__(self, cache: LocalCache, clock: Callable[[], datetime] = datetime.now):
        self.cache = cache
        self.clock = clock

    def _load(self) -> GuestCycleState:
        data = self.cache.get_item(GUEST_CYCLES_KEY)
        if not isinstance(data, dict):
            return GuestCycleState()
        try:
            return GuestCycleState.from_dict(data)
        except (TypeError, ValueError):
            return GuestCycleState()

    def today_count(self) -> int:
        """今日の回数（日付が変わっていればキャッシュを消して0）"""
        state = self._load()
        last_updated = parse_datetime(state.last_updated)
        if last_updated is None:
            return 0
        if not is_same_day(last_updated, self.clock()):
            self.cache.remove_item(GUEST_CYCLES_KEY)
            return 0
        return state.count

    def clear(self):
        self.cache.remove_item(GUEST_CYCLES_KEY)

    async def record_cycle(self) -> int:
        now = self.clock()
        state = self._load()
        last_updated = parse_datetime(state.last_updated)
        if last_updated and not is_same_day(last_updated, now):
            count = 1
        else:
            count = state.count + 1

        self.cache.set_item(GUEST_CYCLES_KEY, GuestCycleState(
            count=count,
            last_updated=now.isoformat(timespec="seconds"),
        ).to_dict())
        return count


class CycleCounter:
    """サイクル数の窓口（ログイン状態で保存先を切り替える）"""

    def __init__(self, identity: IdentityResolver, remote: RemoteCycleCounter,
                 local: LocalCycleCounter, clock: Callable[[], datetime] = datetime.now):
        self.identity = identity
        self.remote = remote
        self.local = local
        self.clock = clock
        self.count: int = 0  # 最後に確認できた今日の回数
        self.error: Optional[str] = None

    async def refresh(self) -> int:
        """今日の回数を読み込み"""
        state = await self.identity.wait_resolved()
        if state == IdentityState.AUTHENTICATED and self.identity.user is not None:
            user = self.identity.user
            last_date = parse_datetime(user.last_pomodoro_date)
            if last_date and is_same_day(last_date, self.clock()):
                self.count = user.cycles
            else:
                self.count = 0
            # 認証済みならゲストの記録は使わない
            self.local.clear()
        else:
            self.count = self.local.today_count()
        return self.count

    async def record_cycle(self) -> int:
        """1回分を記録して今日の回数を返す（重複排除はしない）"""
        state = await self.identity.wait_resolved()
        self.error = None
        if state == IdentityState.AUTHENTICATED:
            try:
                count = await self.remote.record_cycle()
            except PomoflowError as e:
                self.error = f"Failed to update daily cycles: {e.message}"
                logger.error(self.error)
                raise
            self.identity.update_cycles(count, self.clock().isoformat(timespec="seconds"))
        else:
            count = await self.local.record_cycle()
        self.count = count
        return count
