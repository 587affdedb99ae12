"""
タスク操作ロジック
認証済みユーザーはサーバー（楽観的更新）、ゲストはローカルキャッシュに保存する
"""
import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional, Any

from ..cloud.api_client import ApiClient
from ..errors import PomoflowError, NotFoundError, ValidationError
from ..local_cache import LocalCache, GUEST_TASKS_KEY
from ..models import (
    Task, copy_task, now_iso,
    validate_task_text, validate_count,
)
from .identity import IdentityResolver, IdentityState
from .optimistic import OptimisticTransaction

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "optimistic-"

# Pythonのフィールド名 → APIのフィールド名
_WIRE_FIELDS = {
    "text": "text",
    "pomodoros": "pomodoros",
    "pomodoros_completed": "pomodorosCompleted",
    "completed": "completed",
    "project_id": "projectId",
}


def is_temporary_id(task_id: Optional[str]) -> bool:
    return bool(task_id) and task_id.startswith(TEMP_ID_PREFIX)


def validate_task_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """更新フィールドをチェックして整形済みの辞書を返す"""
    unknown = set(fields) - set(_WIRE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    cleaned = dict(fields)
    if "text" in cleaned:
        cleaned["text"] = validate_task_text(cleaned["text"])
    if "pomodoros" in cleaned:
        cleaned["pomodoros"] = validate_count(cleaned["pomodoros"], "pomodoros", minimum=1)
    if "pomodoros_completed" in cleaned:
        cleaned["pomodoros_completed"] = validate_count(
            cleaned["pomodoros_completed"], "pomodoros_completed", minimum=0)
    if "completed" in cleaned and not isinstance(cleaned["completed"], bool):
        raise ValidationError("completed must be a boolean")
    if "project_id" in cleaned:
        cleaned["project_id"] = cleaned["project_id"] or None
    return cleaned


def apply_fields(task: Task, fields: Dict[str, Any]):
    """フィールドを反映し、完了条件を再評価"""
    for name, value in fields.items():
        setattr(task, name, value)
    task.apply_completion_rule()
    task.updated_at = now_iso()


class TaskStore:
    """タスク保存先の共通インターフェース"""

    # Trueなら楽観的更新（スナップショット → 仮反映 → 確定/巻き戻し）を行う
    optimistic = False

    async def fetch_all(self) -> List[Task]:
        raise NotImplementedError

    async def create(self, text: str, pomodoros: int, project_id: Optional[str]) -> Task:
        raise NotImplementedError

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        raise NotImplementedError

    async def increment(self, task_id: str) -> Task:
        raise NotImplementedError

    async def toggle(self, task_id: str) -> Task:
        raise NotImplementedError

    async def delete(self, task_id: str):
        raise NotImplementedError


class RemoteTaskStore(TaskStore):
    """サーバーに保存するタスクストア"""

    optimistic = True

    def __init__(self, api: ApiClient):
        self.api = api

    async def fetch_all(self) -> List[Task]:
        data = await self.api.get("/tasks")
        if not isinstance(data, list):
            logger.warning("タスク一覧が配列ではありません: %r", data)
            return []
        return [Task.from_dict(item) for item in data]

    async def create(self, text: str, pomodoros: int, project_id: Optional[str]) -> Task:
        data = await self.api.post("/tasks", {
            "text": text,
            "pomodoros": pomodoros,
            "projectId": project_id,
        })
        return Task.from_dict(data)

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        body = {_WIRE_FIELDS[name]: value for name, value in fields.items()}
        data = await self.api.put(f"/tasks/{task_id}", body)
        return Task.from_dict(data)

    async def increment(self, task_id: str) -> Task:
        data = await self.api.put(f"/tasks/{task_id}/incrementPomodoro")
        return Task.from_dict(data)

    async def toggle(self, task_id: str) -> Task:
        data = await self.api.put(f"/tasks/{task_id}/toggleCompleted")
        return Task.from_dict(data)

    async def delete(self, task_id: str):
        await self.api.delete(f"/tasks/{task_id}")


class LocalTaskStore(TaskStore):
    """ゲスト用：ローカルキャッシュに同期的に保存するタスクストア"""

    def __init__(self, cache: LocalCache):
        self.cache = cache

    def read_all(self) -> List[Task]:
        """キャッシュからタスクを読み込み（挿入順）"""
        data = self.cache.get_item(GUEST_TASKS_KEY, [])
        if not isinstance(data, list):
            return []
        tasks = [Task.from_dict(item) for item in data]
        for task in tasks:
            task.project_id = None  # ゲストはプロジェクトを使えない
        return tasks

    def _save(self, tasks: List[Task]):
        self.cache.set_item(GUEST_TASKS_KEY, [task.to_dict() for task in tasks])

    def _find(self, tasks: List[Task], task_id: str) -> Task:
        for task in tasks:
            if task.id == task_id:
                return task
        raise NotFoundError("Task not found")

    def _modify(self, task_id: str, mutate: Callable[[Task], None]) -> Task:
        tasks = self.read_all()
        task = self._find(tasks, task_id)
        mutate(task)
        self._save(tasks)
        return copy_task(task)

    def clear(self):
        """ゲストのタスクを破棄"""
        self.cache.remove_item(GUEST_TASKS_KEY)

    async def fetch_all(self) -> List[Task]:
        return self.read_all()

    async def create(self, text: str, pomodoros: int, project_id: Optional[str]) -> Task:
        now = now_iso()
        task = Task(
            id=str(uuid.uuid4()),
            text=text,
            pomodoros=pomodoros,
            pomodoros_completed=0,
            completed=False,
            project_id=None,  # ゲストはプロジェクトを使えない
            user_id="guest",
            created_at=now,
            updated_at=now,
        )
        tasks = self.read_all()
        tasks.append(task)
        self._save(tasks)
        return copy_task(task)

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        fields = dict(fields)
        if "project_id" in fields:
            fields["project_id"] = None
        return self._modify(task_id, lambda task: apply_fields(task, fields))

    async def increment(self, task_id: str) -> Task:
        def mutate(task: Task):
            task.pomodoros_completed += 1
            task.apply_completion_rule()
            task.updated_at = now_iso()
        return self._modify(task_id, mutate)

    async def toggle(self, task_id: str) -> Task:
        def mutate(task: Task):
            task.completed = not task.completed
            task.updated_at = now_iso()
        return self._modify(task_id, mutate)

    async def delete(self, task_id: str):
        tasks = self.read_all()
        task = self._find(tasks, task_id)
        tasks.remove(task)
        self._save(tasks)


class TaskStoreFacade:
    """タスク操作の窓口

    呼び出しごとにログイン状態を確認し、RemoteTaskStore / LocalTaskStore を切り替える。
    サーバー側の更新は同じタスクIDごとに直列化する（連打しても加算が失われない）。
    """

    def __init__(self, identity: IdentityResolver, remote: RemoteTaskStore, local: LocalTaskStore):
        self.identity = identity
        self.remote = remote
        self.local = local

        self.tasks: List[Task] = []
        self.current_task_id: Optional[str] = None
        self.is_loading: bool = False
        self.error: Optional[str] = None
        self._locks: Dict[str, asyncio.Lock] = {}

        # コールバック
        self.on_change: Optional[Callable] = None

    # === 内部処理 ===

    async def _store(self) -> TaskStore:
        """現在のログイン状態に応じた保存先（キャッシュしない）"""
        state = await self.identity.wait_resolved()
        if state == IdentityState.AUTHENTICATED:
            return self.remote
        return self.local

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    def _prune_locks(self):
        """一覧にないタスクのロックを破棄（処理中のものは残す）"""
        present = {task.id for task in self.tasks}
        for task_id in list(self._locks):
            if task_id not in present and not self._locks[task_id].locked():
                del self._locks[task_id]

    def _check_id(self, task_id: str):
        if is_temporary_id(task_id):
            raise NotFoundError("Task is still being saved")

    def _fail(self, action: str, error: PomoflowError):
        self.error = f"{action}: {error.message}"
        logger.error("%s (%s)", self.error, type(error).__name__)

    def _sync_from_local(self):
        self.tasks[:] = self.local.read_all()
        self._changed()

    def _changed(self):
        self._refresh_selection()
        if self.on_change:
            self.on_change(self.tasks)

    def _refresh_selection(self):
        """選択中タスクが消えたら解除、未選択なら先頭を選択"""
        if self.current_task_id and self.get(self.current_task_id) is None:
            self.current_task_id = None
        if not self.current_task_id and not self.is_loading:
            for task in self.tasks:
                if not is_temporary_id(task.id):
                    self.current_task_id = task.id
                    break

    # === 参照 ===

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @property
    def current_task(self) -> Optional[Task]:
        if not self.current_task_id:
            return None
        return self.get(self.current_task_id)

    def select(self, task_id: Optional[str]):
        """タイマーで使うタスクを選択"""
        if task_id is not None:
            self._check_id(task_id)
            if self.get(task_id) is None:
                raise NotFoundError("Task not found")
        self.current_task_id = task_id

    async def load(self) -> List[Task]:
        """タスク一覧を読み込み（認証済み：サーバー / ゲスト：キャッシュ）"""
        store = await self._store()
        self.error = None
        self.is_loading = True
        try:
            tasks = await store.fetch_all()
        except PomoflowError as e:
            self._fail("Failed to load tasks", e)
            self.tasks[:] = []
            self._prune_locks()
            raise
        finally:
            self.is_loading = False

        if store is self.remote:
            # ログイン後はゲストのタスクを破棄する（マージはしない）
            self.local.clear()
        self.tasks[:] = tasks
        self._prune_locks()
        self._changed()
        return list(self.tasks)

    async def list(self) -> List[Task]:
        return await self.load()

    # === 作成 ===

    async def create(self, text: str, pomodoros: int = 1, project_id: Optional[str] = None) -> Task:
        """タスクを作成（完了数0・未完了で開始）"""
        text = validate_task_text(text)
        pomodoros = validate_count(pomodoros, "pomodoros", minimum=1)
        store = await self._store()
        self.error = None

        if not store.optimistic:
            try:
                task = await store.create(text, pomodoros, None)
            except PomoflowError as e:
                self._fail("Failed to add task", e)
                raise
            self._sync_from_local()
            return task

        now = now_iso()
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        user = self.identity.user
        tx = OptimisticTransaction(self.tasks, temp_id)
        tx.insert(Task(
            id=temp_id,
            text=text,
            pomodoros=pomodoros,
            pomodoros_completed=0,
            completed=False,
            project_id=project_id or None,
            user_id=user.id if user else None,
            created_at=now,
            updated_at=now,
        ))
        self._changed()

        try:
            server_task = await store.create(text, pomodoros, project_id or None)
        except PomoflowError as e:
            tx.rollback()
            self._fail("Failed to add task", e)
            self._changed()
            raise

        tx.commit(server_task)
        if self.current_task_id == temp_id:
            self.current_task_id = server_task.id
        self._changed()
        return server_task

    # === 更新系 ===

    async def _mutate(self, task_id: str, action: str,
                      mutate: Callable[[Task], None],
                      call: Callable[[TaskStore], Any]) -> Task:
        """更新系の共通処理（ゲスト：即保存 / 認証済み：楽観的更新）"""
        self._check_id(task_id)
        store = await self._store()
        self.error = None

        if not store.optimistic:
            try:
                task = await call(store)
            except PomoflowError as e:
                self._fail(action, e)
                raise
            self._sync_from_local()
            return task

        async with self._lock_for(task_id):
            tx = OptimisticTransaction(self.tasks, task_id)
            tx.apply(mutate)
            self._changed()
            try:
                server_task = await call(store)
            except PomoflowError as e:
                tx.rollback()
                self._fail(action, e)
                self._changed()
                raise
            tx.commit(server_task)
            self._changed()
            return server_task

    async def update(self, task_id: str, **fields) -> Task:
        """タスクを部分更新（text, pomodoros, pomodoros_completed, completed, project_id）"""
        fields = validate_task_fields(fields)
        return await self._mutate(
            task_id, "Failed to update task",
            lambda task: apply_fields(task, fields),
            lambda store: store.update(task_id, fields),
        )

    async def set_pomodoros(self, task_id: str, pomodoros: int) -> Task:
        """目標ポモドーロ数を変更"""
        return await self.update(task_id, pomodoros=pomodoros)

    async def increment_session_count(self, task_id: str) -> Task:
        """完了ポモドーロ数を1増やす"""
        def mutate(task: Task):
            task.pomodoros_completed += 1
            task.apply_completion_rule()
            task.updated_at = now_iso()

        return await self._mutate(
            task_id, "Failed to increment pomodoro",
            mutate,
            lambda store: store.increment(task_id),
        )

    async def toggle_completion(self, task_id: str) -> Task:
        """完了フラグを反転（ポモドーロ数とは無関係）"""
        def mutate(task: Task):
            task.completed = not task.completed
            task.updated_at = now_iso()

        return await self._mutate(
            task_id, "Failed to toggle task completed",
            mutate,
            lambda store: store.toggle(task_id),
        )

    # === 削除 ===

    async def delete(self, task_id: str):
        """タスクを削除（失敗時は元の位置に戻す）"""
        self._check_id(task_id)
        store = await self._store()
        self.error = None

        if not store.optimistic:
            try:
                await store.delete(task_id)
            except PomoflowError as e:
                self._fail("Failed to delete task", e)
                raise
            self._sync_from_local()
            return

        async with self._lock_for(task_id):
            tx = OptimisticTransaction(self.tasks, task_id)
            tx.remove()
            self._changed()
            try:
                await store.delete(task_id)
            except PomoflowError as e:
                tx.rollback()
                self._fail("Failed to delete task", e)
                self._changed()
                raise
        self._locks.pop(task_id, None)

    # === プロジェクト連携 ===

    def detach_project(self, project_id: str) -> int:
        """削除されたプロジェクトへの参照をメモリ上のタスクから外す"""
        detached = 0
        for i, task in enumerate(self.tasks):
            if task.project_id == project_id:
                updated = copy_task(task)
                updated.project_id = None
                self.tasks[i] = updated
                detached += 1
        if detached:
            self._changed()
        return detached
