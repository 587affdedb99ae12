"""
設定の読み込み（.env / 環境変数）
"""
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# 環境変数を読み込み
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """アプリケーション設定"""
    api_base_url: str = "http://localhost:8080/api"
    request_timeout: float = 10.0  # 秒
    cache_path: str = "pomoflow_cache.db"  # ゲスト用ローカルキャッシュ
    db_path: str = "pomoflow.db"  # サーバー側ストア
    secret_key: str = "pomoflow-dev-secret-key"
    cookie_secure: bool = False
    focus_minutes: int = 25
    short_break_minutes: int = 5
    long_break_minutes: int = 15
    long_break_interval: int = 4  # 何回ごとに長い休憩にするか

    @classmethod
    def from_env(cls) -> "Settings":
        """環境変数から設定を生成"""
        defaults = cls()
        return cls(
            api_base_url=os.getenv("POMOFLOW_API_URL", defaults.api_base_url),
            request_timeout=float(os.getenv("POMOFLOW_REQUEST_TIMEOUT", defaults.request_timeout)),
            cache_path=os.getenv("POMOFLOW_CACHE_PATH", defaults.cache_path),
            db_path=os.getenv("POMOFLOW_DB_PATH", defaults.db_path),
            secret_key=os.getenv("SECRET_KEY", defaults.secret_key),
            cookie_secure=_env_bool("POMOFLOW_COOKIE_SECURE", defaults.cookie_secure),
            focus_minutes=int(os.getenv("POMOFLOW_FOCUS_MINUTES", defaults.focus_minutes)),
            short_break_minutes=int(os.getenv("POMOFLOW_SHORT_BREAK_MINUTES", defaults.short_break_minutes)),
            long_break_minutes=int(os.getenv("POMOFLOW_LONG_BREAK_MINUTES", defaults.long_break_minutes)),
            long_break_interval=int(os.getenv("POMOFLOW_LONG_BREAK_INTERVAL", defaults.long_break_interval)),
        )
