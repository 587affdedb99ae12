"""
楽観的更新（スナップショット → 仮反映 → 確定 or 巻き戻し）
"""
from typing import List, Optional, Callable

from ..models import Task, copy_task


class OptimisticTransaction:
    """1件のタスクに対する楽観的更新

    使い方:
        tx = OptimisticTransaction(tasks, task_id)   # 1. スナップショット
        tx.apply(lambda task: ...)                   # 2. 仮反映（同期）
        try:
            server_task = await remote_call()        # 3. サーバー呼び出し
        except PomoflowError:
            tx.rollback()
            raise
        tx.commit(server_task)
    """

    def __init__(self, tasks: List[Task], task_id: str):
        self.tasks = tasks
        self.task_id = task_id
        self.index: Optional[int] = None
        self.snapshot: Optional[Task] = None
        # 削除の巻き戻し用に前後のタスクIDを記録
        self.previous_id: Optional[str] = None
        self.next_id: Optional[str] = None
        for i, task in enumerate(tasks):
            if task.id == task_id:
                self.index = i
                self.snapshot = copy_task(task)
                if i > 0:
                    self.previous_id = tasks[i - 1].id
                if i + 1 < len(tasks):
                    self.next_id = tasks[i + 1].id
                break

    @property
    def exists(self) -> bool:
        return self.snapshot is not None

    def _position(self, task_id: str) -> Optional[int]:
        for i, task in enumerate(self.tasks):
            if task.id == task_id:
                return i
        return None

    def apply(self, mutate: Callable[[Task], None]) -> Optional[Task]:
        """対象タスクに変更を仮反映"""
        position = self._position(self.task_id)
        if position is None:
            return None
        task = copy_task(self.tasks[position])
        mutate(task)
        self.tasks[position] = task
        return task

    def insert(self, task: Task, index: int = 0):
        """新規タスクを仮追加（作成用）"""
        self.tasks.insert(index, task)

    def remove(self):
        """対象タスクを仮削除（削除用）"""
        position = self._position(self.task_id)
        if position is not None:
            del self.tasks[position]

    def commit(self, server_task: Optional[Task] = None):
        """サーバーの値で確定（仮反映の値は使わない）"""
        if server_task is None:
            return
        position = self._position(self.task_id)
        if position is not None:
            self.tasks[position] = server_task

    def rollback(self):
        """スナップショットの状態に戻す（位置も復元）"""
        position = self._position(self.task_id)
        if self.snapshot is None:
            # 仮追加したタスクを取り除く
            if position is not None:
                del self.tasks[position]
            return

        restored = copy_task(self.snapshot)
        if position is not None:
            self.tasks[position] = restored
            return

        # 削除済み：前後のタスクを基準に戻す（他の操作でずれた番号は使わない）
        previous = self._position(self.previous_id) if self.previous_id else None
        if previous is not None:
            self.tasks.insert(previous + 1, restored)
            return
        following = self._position(self.next_id) if self.next_id else None
        if following is not None:
            self.tasks.insert(following, restored)
            return
        index = self.index if self.index is not None else 0
        self.tasks.insert(min(index, len(self.tasks)), restored)
