"""
クライアント側の状態オブジェクトをまとめて生成する
シングルトンは使わず、必要な数だけ独立したセッションを作れる
"""
from typing import Optional

import httpx

from .cloud.api_client import ApiClient
from .config import Settings
from .local_cache import LocalCache
from .logic.cycle_counter import CycleCounter, LocalCycleCounter, RemoteCycleCounter
from .logic.identity import IdentityResolver
from .logic.project_facade import ProjectFacade
from .logic.task_store import LocalTaskStore, RemoteTaskStore, TaskStoreFacade
from .logic.timer_logic import SessionStateMachine
from .notify import SystemNotifier


class PomoflowSession:
    """1ユーザー分のクライアント状態"""

    def __init__(self, settings: Optional[Settings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 notifier=None, tick_interval: float = 1.0):
        self.settings = settings or Settings.from_env()
        self.api = ApiClient(self.settings.api_base_url, self.settings.request_timeout, transport=transport)
        self.cache = LocalCache(self.settings.cache_path)

        self.identity = IdentityResolver(self.api)
        self.tasks = TaskStoreFacade(self.identity, RemoteTaskStore(self.api), LocalTaskStore(self.cache))
        self.cycles = CycleCounter(self.identity, RemoteCycleCounter(self.api), LocalCycleCounter(self.cache))
        self.projects = ProjectFacade(self.identity, self.api, task_facade=self.tasks)
        self.timer = SessionStateMachine.from_settings(
            self.settings,
            self.cycles,
            task_facade=self.tasks,
            notifier=notifier if notifier is not None else SystemNotifier(),
            tick_interval=tick_interval,
        )

    async def start(self):
        """ログイン状態を確定させてから、タスクと今日の回数を読み込む"""
        await self.identity.resolve()
        await self.reload()

    async def reload(self):
        """ログイン・ログアウト後の再読み込み"""
        await self.tasks.load()
        await self.cycles.refresh()
        if self.identity.is_authenticated:
            await self.projects.list()
        else:
            self.projects.projects = []

    async def login(self, identifier: str, password: str):
        await self.identity.login(identifier, password)
        await self.reload()

    async def register(self, email: str, username: str, password: str):
        await self.identity.register(email, username, password)
        await self.reload()

    async def logout(self):
        self.timer.pause()
        await self.identity.logout()
        await self.reload()

    async def close(self):
        self.timer.pause()
        await self.api.aclose()
