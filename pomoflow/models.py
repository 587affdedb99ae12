"""
データモデル定義
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any

from .errors import ValidationError


PLANS = ("free", "trial", "plus")
PREMIUM_PLANS = ("trial", "plus")

PROJECT_NAME_MAX_LENGTH = 50


def now_iso() -> str:
    """現在時刻をISO形式で取得"""
    return datetime.now().isoformat(timespec="seconds")


def parse_datetime(value) -> Optional[datetime]:
    """ISO文字列（または datetime）を datetime に変換"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def is_same_day(d1: datetime, d2: datetime) -> bool:
    """同じ暦日かどうか（経過時間ではなく年月日で比較）"""
    return (d1.year, d1.month, d1.day) == (d2.year, d2.month, d2.day)


@dataclass
class Task:
    """タスクモデル"""
    id: Optional[str] = None
    text: str = ""
    pomodoros: int = 1  # 目標ポモドーロ数
    pomodoros_completed: int = 0  # 完了ポモドーロ数
    completed: bool = False
    project_id: Optional[str] = None
    user_id: Optional[str] = None  # ゲストの場合は "guest"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def apply_completion_rule(self):
        """完了数が目標に達したら完了にする（自動で未完了には戻さない）"""
        if self.pomodoros_completed >= self.pomodoros and not self.completed:
            self.completed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "text": self.text,
            "pomodoros": self.pomodoros,
            "pomodorosCompleted": self.pomodoros_completed,
            "completed": self.completed,
            "projectId": self.project_id,
            "userId": self.user_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data.get("_id") or data.get("id"),
            text=data.get("text", ""),
            pomodoros=int(data.get("pomodoros", 1)),
            pomodoros_completed=int(data.get("pomodorosCompleted", 0)),
            completed=bool(data.get("completed", False)),
            project_id=data.get("projectId"),
            user_id=data.get("userId"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class Project:
    """プロジェクトモデル（認証済み・有料プランのみ）"""
    id: Optional[str] = None
    name: str = ""
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "name": self.name,
            "userId": self.user_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=data.get("_id") or data.get("id"),
            name=data.get("name", ""),
            user_id=data.get("userId"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class User:
    """ユーザー（プリンシパル）モデル"""
    id: Optional[str] = None
    email: str = ""
    username: str = ""
    plan: str = "free"  # free, trial, plus
    trial_start: Optional[str] = None
    cycles: int = 0  # 今日完了したポモドーロ数
    last_pomodoro_date: Optional[str] = None
    password_hash: str = field(default="", repr=False)

    @property
    def is_premium(self) -> bool:
        return self.plan in PREMIUM_PLANS

    def to_dict(self) -> Dict[str, Any]:
        """外部向けの要約（パスワードハッシュは含めない）"""
        return {
            "_id": self.id,
            "email": self.email,
            "username": self.username,
            "plan": self.plan,
            "trialStart": self.trial_start,
            "cycles": self.cycles,
            "lastPomodoroDate": self.last_pomodoro_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data.get("_id") or data.get("id"),
            email=data.get("email", ""),
            username=data.get("username", ""),
            plan=data.get("plan", "free"),
            trial_start=data.get("trialStart"),
            cycles=int(data.get("cycles", 0) or 0),
            last_pomodoro_date=data.get("lastPomodoroDate"),
        )


@dataclass
class GuestCycleState:
    """ゲスト用の今日のサイクル数キャッシュ"""
    count: int = 0
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "lastUpdated": self.last_updated}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuestCycleState":
        return cls(count=int(data.get("count", 0)), last_updated=data.get("lastUpdated"))


def copy_task(task: Task) -> Task:
    """タスクのコピーを作成（スナップショット用）"""
    return Task(**asdict(task))


# ===== 入力チェック =====

def validate_task_text(text) -> str:
    """タスク名をチェックして前後の空白を除いた値を返す"""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Task text is required")
    return text.strip()


def validate_count(value, name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    return value


def validate_project_name(name) -> str:
    """プロジェクト名をチェックして整形済みの名前を返す"""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Project name is required")
    name = name.strip()
    if len(name) > PROJECT_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Project name cannot be more than {PROJECT_NAME_MAX_LENGTH} characters")
    return name
