"""
データベース操作クラス（サーバー側ストア）
ユーザー・タスク・プロジェクトを保存する
"""
import re
import sqlite3
import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any

from werkzeug.security import generate_password_hash, check_password_hash

from .errors import ValidationError, NotFoundError, AuthorizationError
from .models import (
    Task, Project, User, PLANS,
    now_iso, parse_datetime, is_same_day,
    validate_task_text, validate_count, validate_project_name,
)

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def new_id() -> str:
    """サーバー発行のID"""
    return uuid.uuid4().hex


class Database:
    """SQLiteデータベース管理クラス"""

    def __init__(self, db_path: str = "pomoflow.db"):
        self.db_path = db_path
        self.init_database()

    def get_connection(self):
        """データベース接続を取得"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """データベースとテーブルの初期化"""
        conn = self.get_connection()
        cursor = conn.cursor()

        # usersテーブル
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                plan TEXT DEFAULT 'free',
                trial_start TIMESTAMP,
                cycles INTEGER DEFAULT 0,
                last_pomodoro_date TIMESTAMP
            )
        """)

        # projectsテーブル（名前はユーザーごとに一意）
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                UNIQUE (user_id, name),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        # tasksテーブル
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                text TEXT NOT NULL,
                pomodoros INTEGER DEFAULT 1,
                pomodoros_completed INTEGER DEFAULT 0,
                completed INTEGER DEFAULT 0,
                project_id TEXT,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (project_id) REFERENCES projects(id)
            )
        """)

        conn.commit()
        conn.close()

    # ===== User操作 =====

    def _row_to_user(self, row) -> User:
        return User(
            id=row['id'],
            email=row['email'],
            username=row['username'],
            plan=row['plan'],
            trial_start=row['trial_start'],
            cycles=row['cycles'],
            last_pomodoro_date=row['last_pomodoro_date'],
            password_hash=row['password_hash'],
        )

    def create_user(self, email: str, username: str, password: str, plan: str = "trial") -> User:
        """ユーザーを登録（新規ユーザーはトライアルから開始）"""
        email = (email or "").strip()
        username = (username or "").strip()
        if not email or not username or not password:
            raise ValidationError("Please provide email, username and password")
        if plan not in PLANS:
            raise ValidationError(f"Unknown plan: {plan}")

        if self.find_user(email=email):
            raise ValidationError("User with this email already exists")
        if self.find_user(username=username):
            raise ValidationError("User with this username already exists")

        user = User(
            id=new_id(),
            email=email,
            username=username,
            plan=plan,
            trial_start=now_iso() if plan == "trial" else None,
            cycles=0,
            last_pomodoro_date=None,
            password_hash=generate_password_hash(password),
        )
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO users (id, email, username, password_hash, plan, trial_start, cycles, last_pomodoro_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (user.id, user.email, user.username, user.password_hash,
              user.plan, user.trial_start, user.cycles, user.last_pomodoro_date))
        conn.commit()
        conn.close()
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """IDでユーザーを取得"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        conn.close()
        return self._row_to_user(row) if row else None

    def find_user(self, email: str = None, username: str = None) -> Optional[User]:
        """メールアドレスまたはユーザー名でユーザーを検索"""
        conn = self.get_connection()
        cursor = conn.cursor()
        if email:
            cursor.execute("SELECT * FROM users WHERE email = ?", (email.strip(),))
        elif username:
            cursor.execute("SELECT * FROM users WHERE username = ?", (username.strip(),))
        else:
            conn.close()
            return None
        row = cursor.fetchone()
        conn.close()
        return self._row_to_user(row) if row else None

    def verify_credentials(self, password: str, email: str = None, username: str = None) -> User:
        """認証情報を検証してユーザーを返す"""
        if not email and not username:
            raise ValidationError("Please provide email or username.")
        user = self.find_user(email=email, username=username)
        if not user or not password or not check_password_hash(user.password_hash, password):
            raise ValidationError("Invalid credentials")
        return user

    def set_plan(self, user_id: str, plan: str):
        """プランを変更（課金フロー側から呼ばれる想定）"""
        if plan not in PLANS:
            raise ValidationError(f"Unknown plan: {plan}")
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("UPDATE users SET plan = ? WHERE id = ?", (plan, user_id))
        conn.commit()
        conn.close()

    def increment_cycles(self, user_id: str, now: datetime = None) -> int:
        """今日のサイクル数を加算（日付が変わっていれば1から数え直す）"""
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")

        if now is None:
            now = datetime.now()

        last_date = parse_datetime(user.last_pomodoro_date)
        if last_date and not is_same_day(last_date, now):
            cycles = 1
        else:
            cycles = user.cycles + 1

        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE users SET cycles = ?, last_pomodoro_date = ?
            WHERE id = ?
        """, (cycles, now.isoformat(timespec="seconds"), user_id))
        conn.commit()
        conn.close()
        return cycles

    # ===== Task操作 =====

    def _row_to_task(self, row) -> Task:
        return Task(
            id=row['id'],
            text=row['text'],
            pomodoros=row['pomodoros'],
            pomodoros_completed=row['pomodoros_completed'],
            completed=bool(row['completed']),
            project_id=row['project_id'],
            user_id=row['user_id'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def _save_task(self, task: Task):
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE tasks
            SET text = ?, pomodoros = ?, pomodoros_completed = ?, completed = ?,
                project_id = ?, updated_at = ?
            WHERE id = ?
        """, (task.text, task.pomodoros, task.pomodoros_completed, int(task.completed),
              task.project_id, task.updated_at, task.id))
        conn.commit()
        conn.close()

    def create_task(self, user_id: str, text: str, pomodoros: int = 1,
                    project_id: Optional[str] = None) -> Task:
        """タスクを作成"""
        text = validate_task_text(text)
        pomodoros = validate_count(pomodoros, "pomodoros", minimum=1)
        if project_id:
            self.get_project_for_user(project_id, user_id)

        now = now_iso()
        task = Task(
            id=new_id(),
            text=text,
            pomodoros=pomodoros,
            pomodoros_completed=0,
            completed=False,
            project_id=project_id or None,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO tasks (id, user_id, text, pomodoros, pomodoros_completed, completed,
                               project_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (task.id, task.user_id, task.text, task.pomodoros, task.pomodoros_completed,
              int(task.completed), task.project_id, task.created_at, task.updated_at))
        conn.commit()
        conn.close()
        return task

    def get_tasks(self, user_id: str) -> List[Task]:
        """ユーザーの全タスクを取得（新しい順）"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM tasks WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_task(row) for row in rows]

    def get_task_for_user(self, task_id: str, user_id: str) -> Task:
        """タスクを取得し、所有者を確認"""
        if not _ID_PATTERN.match(task_id or ""):
            raise ValidationError("Invalid task ID")
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            raise NotFoundError("Task not found")
        if row['user_id'] != user_id:
            raise AuthorizationError("Not authorized to access this task")
        return self._row_to_task(row)

    def update_task(self, task_id: str, user_id: str, fields: Dict[str, Any]) -> Task:
        """タスクを部分更新（完了条件も再評価）"""
        task = self.get_task_for_user(task_id, user_id)

        if "text" in fields:
            task.text = validate_task_text(fields["text"])
        if "pomodoros" in fields:
            task.pomodoros = validate_count(fields["pomodoros"], "pomodoros", minimum=1)
        if "pomodorosCompleted" in fields:
            task.pomodoros_completed = validate_count(
                fields["pomodorosCompleted"], "pomodorosCompleted", minimum=0)
        if "completed" in fields:
            if not isinstance(fields["completed"], bool):
                raise ValidationError("completed must be a boolean")
            task.completed = fields["completed"]
        if "projectId" in fields:
            project_id = fields["projectId"] or None
            if project_id:
                self.get_project_for_user(project_id, user_id)
            task.project_id = project_id

        task.apply_completion_rule()
        task.updated_at = now_iso()
        self._save_task(task)
        return task

    def increment_task_pomodoro(self, task_id: str, user_id: str) -> Task:
        """完了ポモドーロ数を1増やす"""
        task = self.get_task_for_user(task_id, user_id)
        task.pomodoros_completed += 1
        task.apply_completion_rule()
        task.updated_at = now_iso()
        self._save_task(task)
        return task

    def toggle_task_completed(self, task_id: str, user_id: str) -> Task:
        """完了フラグを反転"""
        task = self.get_task_for_user(task_id, user_id)
        task.completed = not task.completed
        task.updated_at = now_iso()
        self._save_task(task)
        return task

    def delete_task(self, task_id: str, user_id: str):
        """タスクを削除"""
        self.get_task_for_user(task_id, user_id)
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.commit()
        conn.close()

    # ===== Project操作 =====

    def _row_to_project(self, row) -> Project:
        return Project(
            id=row['id'],
            name=row['name'],
            user_id=row['user_id'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def _name_taken(self, user_id: str, name: str, exclude_id: str = None) -> bool:
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id FROM projects WHERE user_id = ? AND name = ? AND id != ?
        """, (user_id, name, exclude_id or ""))
        row = cursor.fetchone()
        conn.close()
        return row is not None

    def get_projects(self, user_id: str) -> List[Project]:
        """ユーザーの全プロジェクトを取得（新しい順）"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM projects WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_project(row) for row in rows]

    def get_project_for_user(self, project_id: str, user_id: str) -> Project:
        """プロジェクトを取得し、所有者を確認"""
        if not _ID_PATTERN.match(project_id or ""):
            raise ValidationError("Invalid project ID")
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            raise NotFoundError("Project not found")
        if row['user_id'] != user_id:
            raise AuthorizationError("Not authorized to access this project")
        return self._row_to_project(row)

    def create_project(self, user_id: str, name: str) -> Project:
        """プロジェクトを作成"""
        name = validate_project_name(name)
        if self._name_taken(user_id, name):
            raise ValidationError("Project with this name already exists for your account.")

        now = now_iso()
        project = Project(id=new_id(), name=name, user_id=user_id, created_at=now, updated_at=now)
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO projects (id, user_id, name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """, (project.id, project.user_id, project.name, project.created_at, project.updated_at))
        conn.commit()
        conn.close()
        return project

    def rename_project(self, project_id: str, user_id: str, name: str) -> Project:
        """プロジェクト名を変更（同じ名前への変更は何もしない）"""
        project = self.get_project_for_user(project_id, user_id)
        name = validate_project_name(name)
        if name != project.name and self._name_taken(user_id, name, exclude_id=project_id):
            raise ValidationError("Another project with this name already exists for your account.")

        project.name = name
        project.updated_at = now_iso()
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE projects SET name = ?, updated_at = ? WHERE id = ?
        """, (project.name, project.updated_at, project.id))
        conn.commit()
        conn.close()
        return project

    def delete_project(self, project_id: str, user_id: str) -> int:
        """プロジェクトを削除し、紐づくタスクの参照を外す（タスクは削除しない）"""
        self.get_project_for_user(project_id, user_id)
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE tasks SET project_id = NULL, updated_at = ? WHERE project_id = ?
        """, (now_iso(), project_id))
        detached = cursor.rowcount
        cursor.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        conn.commit()
        conn.close()
        return detached
